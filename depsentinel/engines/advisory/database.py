"""Advisory sources — immutable, loaded once, shared read-only across scans."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

import structlog
import yaml
from packaging.version import Version

from depsentinel.engines.advisory.models import Advisory, Severity
from depsentinel.engines.versioning import VersionRange, parse_version
from depsentinel.exceptions import AdvisoryDatabaseUnavailable

log = structlog.get_logger("depsentinel.advisory")


@runtime_checkable
class AdvisorySource(Protocol):
    """Known advisories per package name.

    A source with ``available`` false raises ``AdvisoryDatabaseUnavailable``
    on every lookup; ``reason`` says why.
    """

    available: bool
    reason: str | None

    def advisories_for(self, name: str) -> tuple[Advisory, ...]: ...


def _key(name: str) -> str:
    return name.lower()


class AdvisoryDatabase:
    """In-memory advisory index. Never mutated after construction."""

    available = True
    reason: str | None = None

    def __init__(self, advisories: Iterable[Advisory] = ()) -> None:
        index: dict[str, list[Advisory]] = {}
        for advisory in advisories:
            index.setdefault(_key(advisory.package), []).append(advisory)
        self._index = MappingProxyType(
            {name: tuple(sorted(items, key=lambda a: a.id)) for name, items in index.items()}
        )

    def __len__(self) -> int:
        return sum(len(items) for items in self._index.values())

    def advisories_for(self, name: str) -> tuple[Advisory, ...]:
        return self._index.get(_key(name), ())

    @property
    def packages(self) -> list[str]:
        return sorted(self._index)

    # ── loaders ────────────────────────────────────────────────────────────

    @classmethod
    def from_ruby_advisory_db(cls, root: Path) -> AdvisoryDatabase:
        """Load a ruby-advisory-db checkout (``gems/<gem>/<id>.yml``).

        Files that fail to parse are skipped with a warning.
        """
        gems_dir = root / "gems"
        if not gems_dir.is_dir():
            raise AdvisoryDatabaseUnavailable(f"no gems/ directory in {root}")

        advisories: list[Advisory] = []
        for path in sorted(gems_dir.glob("*/*.yml")):
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8"))
                advisories.append(advisory_from_ruby_yaml(data, fallback_id=path.stem))
            except (yaml.YAMLError, KeyError, TypeError, AttributeError, ValueError, OSError) as exc:
                log.warning("advisory.file_skipped", path=str(path), error=str(exc))
        log.info("advisory.loaded", source=str(root), advisories=len(advisories))
        return cls(advisories)

    @classmethod
    def from_json(cls, path: Path) -> AdvisoryDatabase:
        """Load ``{"advisories": [...]}`` from a JSON file."""
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise AdvisoryDatabaseUnavailable(f"cannot read {path}: {exc}") from exc
        entries = data.get("advisories", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise AdvisoryDatabaseUnavailable(f"{path}: expected a list of advisories")

        advisories: list[Advisory] = []
        for entry in entries:
            try:
                advisories.append(advisory_from_dict(entry))
            except (KeyError, TypeError, AttributeError, ValueError) as exc:
                log.warning("advisory.entry_skipped", path=str(path), error=str(exc))
        log.info("advisory.loaded", source=str(path), advisories=len(advisories))
        return cls(advisories)


class UnavailableAdvisorySource:
    """Stand-in for an advisory database that could not be loaded."""

    available = False

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def advisories_for(self, name: str) -> tuple[Advisory, ...]:
        raise AdvisoryDatabaseUnavailable(self.reason)


def advisory_from_ruby_yaml(data: dict[str, Any], *, fallback_id: str = "") -> Advisory:
    """Build an :class:`Advisory` from one ruby-advisory-db record.

    The affected range is everything outside ``patched_versions`` and
    ``unaffected_versions``; the patched version is the highest lower bound
    among the patched ranges.
    """
    patched = [VersionRange.parse(str(e)) for e in data.get("patched_versions") or []]
    unaffected = [VersionRange.parse(str(e)) for e in data.get("unaffected_versions") or []]

    safe = VersionRange.empty()
    for item in patched + unaffected:
        safe = safe.union(item)

    fix_versions: list[Version] = [
        span.lower.version for r in patched for span in r.intervals if span.lower is not None
    ]

    if data.get("criticality"):
        severity = Severity.parse(str(data["criticality"]))
    else:
        score = data.get("cvss_v3") or data.get("cvss_v2")
        severity = Severity.from_cvss(float(score)) if score is not None else Severity.UNKNOWN

    return Advisory(
        id=_ruby_advisory_id(data, fallback_id),
        package=str(data["gem"]),
        affected=safe.complement(),
        severity=severity,
        patched_version=max(fix_versions) if fix_versions else None,
        title=str(data.get("title") or ""),
        url=data.get("url"),
    )


def _ruby_advisory_id(data: dict[str, Any], fallback: str) -> str:
    if data.get("cve"):
        return f"CVE-{data['cve']}"
    if data.get("ghsa"):
        return f"GHSA-{data['ghsa']}"
    if data.get("osvdb"):
        return f"OSVDB-{data['osvdb']}"
    return fallback


def advisory_from_dict(entry: dict[str, Any]) -> Advisory:
    """Build an :class:`Advisory` from the flat JSON layout."""
    if entry.get("severity"):
        severity = Severity.parse(entry["severity"])
    else:
        score = entry.get("cvss")
        severity = Severity.from_cvss(float(score)) if score is not None else Severity.UNKNOWN
    patched = entry.get("patched_version")
    return Advisory(
        id=str(entry["id"]),
        package=str(entry["package"]),
        affected=VersionRange.parse(str(entry.get("affected") or "")),
        severity=severity,
        patched_version=parse_version(str(patched)) if patched else None,
        title=str(entry.get("title") or ""),
        url=entry.get("url"),
    )


def open_advisory_source(path: Path | None) -> AdvisoryDatabase | UnavailableAdvisorySource:
    """Load the advisory database at *path* once.

    Never raises: a missing or unreadable database yields an
    :class:`UnavailableAdvisorySource` so scans degrade to no matches.
    """
    if path is None:
        return UnavailableAdvisorySource("no advisory database configured")
    if not path.exists():
        log.warning("advisory.not_found", path=str(path))
        return UnavailableAdvisorySource(f"advisory database not found at {path}")
    try:
        if path.is_file():
            return AdvisoryDatabase.from_json(path)
        return AdvisoryDatabase.from_ruby_advisory_db(path)
    except AdvisoryDatabaseUnavailable as exc:
        log.warning("advisory.unavailable", path=str(path), reason=str(exc))
        return UnavailableAdvisorySource(str(exc))
