"""Scan orchestrator — parse, resolve, match and suggest updates in one pass.

Holds only immutable collaborators (a version universe, an advisory source
and settings), so one instance may serve concurrent scans. Every scan gets
its own manifest, universe memo, solver, state machine and result.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path

import structlog

from depsentinel.core.config import ScannerSettings
from depsentinel.engines.advisory.database import AdvisorySource
from depsentinel.engines.advisory.matcher import match
from depsentinel.engines.manifest import discover_manifest, parse_manifest
from depsentinel.engines.manifest.models import Manifest
from depsentinel.engines.resolver.models import ResolvedSet
from depsentinel.engines.resolver.solver import ConstraintSolver
from depsentinel.engines.resolver.universe import (
    LockSnapshotUniverse,
    UniverseView,
    VersionUniverse,
)
from depsentinel.engines.scan.models import ScanOptions, ScanResult, ScanState, ScanStatus
from depsentinel.engines.scan.state import ScanStateMachine, TransitionCallback
from depsentinel.engines.scan.updates import compute_updates
from depsentinel.exceptions import ResolutionConflict, ResolutionError

log = structlog.get_logger("depsentinel.scan")


class ScanOrchestrator:
    """Run dependency scans against a shared universe and advisory source.

    With ``universe=None`` each scan resolves against its own lock snapshot
    (offline mode).
    """

    def __init__(
        self,
        universe: VersionUniverse | None,
        advisory_source: AdvisorySource,
        settings: ScannerSettings | None = None,
        callbacks: list[TransitionCallback] | None = None,
    ) -> None:
        self._universe = universe
        self._advisories = advisory_source
        self._settings = settings or ScannerSettings()
        self._callbacks = tuple(callbacks or ())

    @property
    def settings(self) -> ScannerSettings:
        return self._settings

    def scan(self, project_path: Path | str, options: ScanOptions | None = None) -> ScanResult:
        """Scan the manifest found in *project_path*.

        Raises ``ProjectNotFound``, ``ManifestNotFound`` or
        ``MalformedManifest``; resolution and matching failures are captured
        in the result.
        """
        path = Path(project_path)
        machine = self._machine(str(path))
        with _failing(machine):
            machine.advance(ScanState.PARSING)
            files = discover_manifest(path)
            manifest = parse_manifest(files.manifest_text, files.lock_text, files.format_name)
            return self._run(str(path), manifest, options or ScanOptions(), machine)

    def scan_manifest(
        self,
        project: str,
        manifest_text: str,
        lock_text: str | None = None,
        format_name: str = "gemfile",
        options: ScanOptions | None = None,
    ) -> ScanResult:
        """Scan raw manifest (and lock) text without touching the filesystem."""
        machine = self._machine(project)
        with _failing(machine):
            machine.advance(ScanState.PARSING)
            manifest = parse_manifest(manifest_text, lock_text, format_name)
            return self._run(project, manifest, options or ScanOptions(), machine)

    # ── internals ──────────────────────────────────────────────────────────

    def _machine(self, project: str) -> ScanStateMachine:
        return ScanStateMachine(project=project, callbacks=list(self._callbacks))

    def _run(
        self,
        project: str,
        manifest: Manifest,
        options: ScanOptions,
        machine: ScanStateMachine,
    ) -> ScanResult:
        log.info(
            "scan.started",
            project=project,
            format=manifest.format,
            dependencies=len(manifest.dependencies),
        )
        warnings = list(manifest.warnings)

        machine.advance(ScanState.RESOLVING)
        universe = self._universe
        if universe is None:
            universe = LockSnapshotUniverse(manifest.lock)
        view = UniverseView(universe)
        timeout = options.timeout
        if timeout is None:
            timeout = self._settings.resolution_timeout
        solver = ConstraintSolver(
            view,
            max_iterations=self._settings.max_iterations,
            max_backtracks=self._settings.max_backtracks,
            deadline=time.monotonic() + timeout if timeout else None,
        )

        try:
            resolved = solver.resolve(manifest)
        except ResolutionError as exc:
            warnings.extend(solver.warnings)
            machine.advance(ScanState.DONE, outcome=exc.reason_code)
            log.info(
                "scan.partial",
                project=project,
                reason=exc.reason_code,
                resolved=len(exc.partial or ()),
            )
            return ScanResult(
                project=project,
                status=ScanStatus.PARTIAL,
                dependencies=exc.partial or ResolvedSet(),
                conflict=exc.report if isinstance(exc, ResolutionConflict) else None,
                failure_reason=str(exc),
                warnings=tuple(warnings),
                options=options,
                stats=exc.stats or solver.stats,
                transitions=tuple(machine.transitions),
            )
        warnings.extend(solver.warnings)

        machine.advance(ScanState.MATCHING)
        outcome = match(resolved, self._advisories)
        if outcome.database_unavailable:
            warnings.append(f"advisory database unavailable: {outcome.reason}")
        updates = compute_updates(
            resolved,
            outcome.matches,
            view,
            include_non_security=options.include_non_security_updates,
        )

        machine.advance(ScanState.DONE, outcome=ScanStatus.COMPLETE.value)
        log.info(
            "scan.completed",
            project=project,
            dependencies=len(resolved),
            matches=len(outcome.matches),
            updates=len(updates),
        )
        return ScanResult(
            project=project,
            status=ScanStatus.COMPLETE,
            dependencies=resolved,
            matches=outcome.matches,
            updates=updates,
            advisory_database_unavailable=outcome.database_unavailable,
            warnings=tuple(warnings),
            options=options,
            stats=solver.stats,
            transitions=tuple(machine.transitions),
        )


@contextmanager
def _failing(machine: ScanStateMachine):
    """Move *machine* to ``failed`` when the wrapped block raises, then re-raise."""
    try:
        yield machine
    except Exception as exc:
        if not machine.is_terminal:
            machine.fail(type(exc).__name__)
            log.warning(
                "scan.failed",
                project=machine.project,
                reason=type(exc).__name__,
                error=str(exc),
            )
        raise
