"""CLI entry point: depsentinel.

Subcommands:
    depsentinel scan /path/to/project             # Resolve, match advisories, report
    depsentinel scan . --format json --all-updates
    depsentinel validate /path/to/project         # Parse the manifest only
"""

from __future__ import annotations

import sys
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path

import click
import structlog

from depsentinel.core.config import ScannerSettings
from depsentinel.core.logging import setup_logging
from depsentinel.engines.advisory import Severity, open_advisory_source
from depsentinel.engines.manifest import discover_manifest, parse_manifest
from depsentinel.engines.resolver import PyPIUniverse, RubyGemsUniverse, StaticVersionUniverse
from depsentinel.engines.resolver.universe import VersionUniverse
from depsentinel.engines.scan import DetailLevel, OutputFormat, ScanOptions, ScanOrchestrator
from depsentinel.exceptions import ScanError
from depsentinel.report import render

log = structlog.get_logger("depsentinel.cli")

EXIT_FAILED = 1
EXIT_FAIL_ON = 3

_FAIL_ON_CHOICES = [s.value for s in Severity if s is not Severity.UNKNOWN]


def _open_universe(
    stack: ExitStack,
    format_name: str,
    settings: ScannerSettings,
    universe_file: str | None,
    offline: bool,
) -> VersionUniverse | None:
    """Pick the version universe for a scan; ``None`` means the lock snapshot."""
    if offline:
        return None
    if universe_file:
        return StaticVersionUniverse.from_json(Path(universe_file))
    if format_name == "pip-requirements":
        client = PyPIUniverse(settings.pypi_url, timeout=settings.registry_timeout)
    else:
        client = RubyGemsUniverse(settings.rubygems_url, timeout=settings.registry_timeout)
    return stack.enter_context(client)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """depsentinel: local dependency resolution and advisory scanner."""
    setup_logging("DEBUG" if verbose else None)


@main.command("scan")
@click.argument("project_path", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--detail",
    type=click.Choice([d.value for d in DetailLevel]),
    default=DetailLevel.SUMMARY.value,
    show_default=True,
    help="Amount of detail in the result",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice([f.value for f in OutputFormat]),
    default=OutputFormat.SUMMARY.value,
    show_default=True,
    help="Report format",
)
@click.option("--all-updates", is_flag=True, help="Also list non-security updates")
@click.option("--advisory-db", default=None, help="ruby-advisory-db checkout or JSON file")
@click.option(
    "--universe",
    "universe_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON version index to resolve against instead of the registry",
)
@click.option("--offline", is_flag=True, help="Resolve against the lock file only")
@click.option("--timeout", type=float, default=None, help="Resolution deadline in seconds")
@click.option(
    "--fail-on",
    type=click.Choice(_FAIL_ON_CHOICES),
    default=None,
    help="Exit with status 3 if a match at or above this severity is found",
)
def scan(
    project_path: Path,
    detail: str,
    output_format: str,
    all_updates: bool,
    advisory_db: str | None,
    universe_file: str | None,
    offline: bool,
    timeout: float | None,
    fail_on: str | None,
) -> None:
    """Scan the project at PROJECT_PATH for vulnerable dependencies."""
    settings = ScannerSettings.from_env()
    if advisory_db:
        settings = replace(settings, advisory_db_path=advisory_db)

    options = ScanOptions(
        include_non_security_updates=all_updates,
        detail_level=DetailLevel(detail),
        output_format=OutputFormat(output_format),
        timeout=timeout,
    )

    with ExitStack() as stack:
        try:
            files = discover_manifest(project_path)
            universe = _open_universe(stack, files.format_name, settings, universe_file, offline)
        except ScanError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FAILED)
        except (OSError, ValueError) as e:
            click.echo(f"Error: cannot load version index {universe_file}: {e}", err=True)
            sys.exit(EXIT_FAILED)

        advisories = open_advisory_source(settings.advisory_db)
        orchestrator = ScanOrchestrator(universe, advisories, settings)
        try:
            result = orchestrator.scan(project_path, options)
        except ScanError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FAILED)

    click.echo(render(result, options.output_format), nl=False)

    if fail_on:
        threshold = Severity(fail_on).rank
        worst = [m for m in result.matches if m.advisory.severity.rank >= threshold]
        if worst:
            log.info("cli.fail_on_triggered", threshold=fail_on, matches=len(worst))
            sys.exit(EXIT_FAIL_ON)


@main.command("validate")
@click.argument("project_path", type=click.Path(file_okay=False, path_type=Path))
def validate(project_path: Path) -> None:
    """Check that the manifest (and lock file) in PROJECT_PATH parse."""
    try:
        files = discover_manifest(project_path)
        manifest = parse_manifest(files.manifest_text, files.lock_text, files.format_name)
    except ScanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    click.echo(f"Manifest: {files.manifest_path} ({manifest.format})")
    if files.lock_path is not None:
        click.echo(f"Lock file: {files.lock_path}")
    click.echo(f"Dependencies declared: {len(manifest.dependencies)}")
    if manifest.lock is not None:
        click.echo(f"Locked specs: {len(manifest.lock.specs)}")
    for warning in manifest.warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo("Project validation passed")


if __name__ == "__main__":
    main()
