"""Render a :class:`ScanResult` as summary, plain text or JSON."""

from __future__ import annotations

import json

from depsentinel.engines.scan.models import DetailLevel, OutputFormat, ScanResult


def render(result: ScanResult, output_format: OutputFormat | str = OutputFormat.SUMMARY) -> str:
    fmt = OutputFormat(output_format)
    if fmt is OutputFormat.JSON:
        return render_json(result)
    if fmt is OutputFormat.TEXT:
        return render_text(result)
    return render_summary(result)


def render_json(result: ScanResult) -> str:
    return json.dumps({"scan_results": result.to_dict()}, indent=2)


def _database_line(result: ScanResult) -> str:
    return "not available" if result.advisory_database_unavailable else "available"


def render_summary(result: ScanResult) -> str:
    lines = [
        f"Project: {result.project}",
        f"Status: {result.status.value}",
        "",
        "Scan Results:",
        f"  - Dependencies resolved: {len(result.dependencies)}",
        f"  - Security vulnerabilities: {len(result.matches)}",
        f"  - Security updates: {len(result.security_updates)}",
    ]
    other = len(result.updates) - len(result.security_updates)
    if result.options.include_non_security_updates:
        lines.append(f"  - Other updates: {other}")
    lines.append(f"  - Advisory database: {_database_line(result)}")
    if result.conflict is not None:
        lines.append(f"  - Conflict: {result.conflict.package} ({result.conflict.reason})")
    elif result.failure_reason:
        lines.append(f"  - Resolution stopped: {result.failure_reason}")
    if result.warnings:
        lines.append(f"  - Warnings: {len(result.warnings)}")
    return "\n".join(lines) + "\n"


def render_text(result: ScanResult) -> str:
    title = "Dependency Scan Report"
    lines = [
        title,
        "=" * len(title),
        "",
        f"Project: {result.project}",
        f"Scan Timestamp: {result.timestamp.isoformat()}",
        f"Status: {result.status.value}",
        "",
        "Dependencies:",
    ]
    if not result.dependencies:
        lines.append("  (none)")
    for dep in result.dependencies:
        kind = "direct" if dep.direct else "via " + " -> ".join(dep.chain)
        lines.append(f"  - {dep.name} ({dep.version}) [{kind}]")

    lines += ["", "Security Scan:", f"  Advisory database: {_database_line(result)}"]
    lines.append(f"  Vulnerabilities Found: {len(result.matches)}")
    for m in result.matches:
        advisory = m.advisory
        lines.append(
            f"  - [{advisory.severity.value.upper()}] {advisory.id} "
            f"{m.dependency.name} {m.dependency.resolved_version}"
        )
        if advisory.title:
            lines.append(f"      {advisory.title}")
        if advisory.patched_version is not None:
            lines.append(f"      patched in {advisory.patched_version}")
        if result.options.detail_level is DetailLevel.DETAILED and advisory.url:
            lines.append(f"      {advisory.url}")

    if result.updates:
        lines += ["", "Available Updates:"]
        for u in result.updates:
            target = str(u.latest) if u.latest else "no fixed release known"
            tag = " (security)" if u.security else ""
            lines.append(f"  - {u.name}: {u.current} -> {target}{tag}")

    if result.conflict is not None:
        lines += ["", "Resolution Conflict:"]
        lines.extend(f"  {line}" for line in result.conflict.describe().splitlines())
    elif result.failure_reason:
        lines += ["", f"Resolution stopped: {result.failure_reason}"]

    if result.warnings:
        lines += ["", "Warnings:"]
        lines.extend(f"  - {w}" for w in result.warnings)

    if result.options.detail_level is DetailLevel.DETAILED:
        lines += ["", "Scan Phases:"]
        for t in result.transitions:
            suffix = f" ({t.outcome})" if t.outcome else ""
            lines.append(f"  {t.source.value} -> {t.target.value}{suffix}")
        if result.stats is not None:
            s = result.stats
            lines.append(
                f"  iterations={s.iterations} backtracks={s.backtracks} "
                f"decisions={s.decisions} lookups={s.lookups}"
            )
    return "\n".join(lines) + "\n"
