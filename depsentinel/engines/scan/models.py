"""Data models for scan requests and results."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from packaging.version import Version

from depsentinel.engines.advisory.models import AdvisoryMatch
from depsentinel.engines.resolver.models import ConflictReport, ResolutionStats, ResolvedSet


class ScanState(str, enum.Enum):
    IDLE = "idle"
    PARSING = "parsing"
    RESOLVING = "resolving"
    MATCHING = "matching"
    DONE = "done"
    FAILED = "failed"


class ScanStatus(str, enum.Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


class DetailLevel(str, enum.Enum):
    SUMMARY = "summary"
    DETAILED = "detailed"


class OutputFormat(str, enum.Enum):
    SUMMARY = "summary"
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class ScanOptions:
    include_non_security_updates: bool = False
    detail_level: DetailLevel = DetailLevel.SUMMARY
    output_format: OutputFormat = OutputFormat.SUMMARY
    timeout: float | None = None  # seconds; None uses the configured default

    def to_dict(self) -> dict:
        return {
            "include_non_security_updates": self.include_non_security_updates,
            "detail_level": self.detail_level.value,
            "output_format": self.output_format.value,
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class StateTransition:
    source: ScanState
    target: ScanState
    outcome: str | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "from": self.source.value,
            "to": self.target.value,
            "outcome": self.outcome,
            "at": self.at.isoformat(),
        }


@dataclass(frozen=True)
class AvailableUpdate:
    """A newer release worth moving to.

    ``latest`` is the suggested target: for security updates the highest
    known release no matched advisory affects, otherwise the newest release.
    ``latest_allowed`` is the newest release the current constraints admit.
    """

    name: str
    current: Version
    latest: Version | None
    latest_allowed: Version | None = None
    security: bool = False
    advisories: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "current": str(self.current),
            "latest": str(self.latest) if self.latest else None,
            "latest_allowed": str(self.latest_allowed) if self.latest_allowed else None,
            "security": self.security,
            "advisories": list(self.advisories),
        }


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan.

    Equality ignores ``timestamp`` and ``transitions`` so two scans of the
    same input compare equal.
    """

    project: str
    status: ScanStatus
    dependencies: ResolvedSet = field(default_factory=ResolvedSet)
    matches: tuple[AdvisoryMatch, ...] = ()
    updates: tuple[AvailableUpdate, ...] = ()
    conflict: ConflictReport | None = None
    failure_reason: str | None = None
    advisory_database_unavailable: bool = False
    warnings: tuple[str, ...] = ()
    options: ScanOptions = field(default_factory=ScanOptions)
    stats: ResolutionStats | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )
    transitions: tuple[StateTransition, ...] = field(default=(), compare=False)

    @property
    def is_partial(self) -> bool:
        return self.status is ScanStatus.PARTIAL

    @property
    def security_updates(self) -> tuple[AvailableUpdate, ...]:
        return tuple(u for u in self.updates if u.security)

    def to_dict(self) -> dict:
        data = {
            "project": self.project,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "dependencies": [d.to_dict() for d in self.dependencies],
            "matches": [m.to_dict() for m in self.matches],
            "updates": [u.to_dict() for u in self.updates],
            "conflict": self.conflict.to_dict() if self.conflict else None,
            "failure_reason": self.failure_reason,
            "advisory_database_unavailable": self.advisory_database_unavailable,
            "warnings": list(self.warnings),
            "options": self.options.to_dict(),
        }
        if self.options.detail_level is DetailLevel.DETAILED:
            data["stats"] = self.stats.to_dict() if self.stats else None
            data["transitions"] = [t.to_dict() for t in self.transitions]
        return data
