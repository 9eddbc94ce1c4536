"""Custom exceptions for depsentinel.

Fatal errors (project discovery, manifest parsing) propagate out of a scan.
Resolution and advisory errors are captured into the ``ScanResult`` by the
orchestrator and only surface as exceptions when the engines are used
directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depsentinel.engines.resolver.models import ConflictReport, ResolutionStats, ResolvedSet


class ScanError(Exception):
    """Base exception for all scanner errors."""

    reason_code = "error"


class ProjectNotFound(ScanError):
    """Raised when the project directory does not exist."""

    reason_code = "project_not_found"


class ManifestNotFound(ScanError):
    """Raised when the project directory holds no supported manifest."""

    reason_code = "manifest_not_found"


class MalformedManifest(ScanError):
    """Raised when a manifest or lock file cannot be tokenized."""

    reason_code = "malformed_manifest"

    def __init__(self, message: str, *, source_file: str | None = None, line: int | None = None):
        self.source_file = source_file
        self.line = line
        location = ""
        if source_file and line is not None:
            location = f"{source_file}:{line}: "
        elif source_file:
            location = f"{source_file}: "
        super().__init__(f"{location}{message}")


class InvalidVersionRange(ScanError, ValueError):
    """Raised when a version or constraint expression cannot be parsed."""

    reason_code = "invalid_version_range"


class ResolutionError(ScanError):
    """Base for recoverable resolution failures.

    ``partial`` holds the best-effort resolved set reached before the
    failure; ``stats`` the solver counters at the time it gave up.
    """

    def __init__(
        self,
        message: str,
        *,
        partial: ResolvedSet | None = None,
        stats: ResolutionStats | None = None,
    ):
        self.partial = partial
        self.stats = stats
        super().__init__(message)


class ResolutionConflict(ResolutionError):
    """Raised when no version assignment satisfies every constraint."""

    reason_code = "conflict"

    def __init__(
        self,
        report: ConflictReport,
        *,
        partial: ResolvedSet | None = None,
        stats: ResolutionStats | None = None,
    ):
        self.report = report
        super().__init__(report.describe(), partial=partial, stats=stats)


class ResolutionTimeout(ResolutionError):
    """Raised when the solver exceeds its iteration, backtrack or time budget."""

    reason_code = "timeout"

    def __init__(
        self,
        budget: str,
        detail: str,
        *,
        partial: ResolvedSet | None = None,
        stats: ResolutionStats | None = None,
    ):
        self.budget = budget
        self.detail = detail
        super().__init__(
            f"resolution exceeded {budget} budget: {detail}", partial=partial, stats=stats
        )


class AdvisoryDatabaseUnavailable(ScanError):
    """Raised by an advisory source that cannot serve lookups."""

    reason_code = "advisory_database_unavailable"


class VersionUniverseUnavailable(ScanError):
    """Raised when the published versions of a package cannot be retrieved."""

    reason_code = "version_universe_unavailable"

    def __init__(self, package: str, detail: str):
        self.package = package
        self.detail = detail
        super().__init__(f"versions of {package!r} unavailable: {detail}")


class InvalidStateTransition(ScanError, RuntimeError):
    """Raised when the scan state machine is driven out of order."""

    reason_code = "invalid_state_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"cannot move scan from {current} to {requested}")
