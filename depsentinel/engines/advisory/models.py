"""Data models for advisories and advisory matches."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from packaging.version import Version

from depsentinel.engines.manifest.models import Dependency
from depsentinel.engines.versioning import VersionRange


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        if normalized == "moderate":
            return cls.MEDIUM
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_cvss(cls, score: float | None) -> Severity:
        """CVSS v3 qualitative rating."""
        if score is None:
            return cls.UNKNOWN
        if score >= 9.0:
            return cls.CRITICAL
        if score >= 7.0:
            return cls.HIGH
        if score >= 4.0:
            return cls.MEDIUM
        if score > 0.0:
            return cls.LOW
        return cls.UNKNOWN


_RANKS = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.UNKNOWN: 0,
}


@dataclass(frozen=True)
class Advisory:
    """A known vulnerability in a range of versions of one package."""

    id: str
    package: str
    affected: VersionRange
    severity: Severity = Severity.UNKNOWN
    patched_version: Version | None = None
    title: str = ""
    url: str | None = None

    def affects(self, version: Version) -> bool:
        """True if *version* is in the affected range and not yet patched."""
        if version not in self.affected:
            return False
        return self.patched_version is None or self.patched_version > version

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package": self.package,
            "affected": str(self.affected),
            "severity": self.severity.value,
            "patched_version": str(self.patched_version) if self.patched_version else None,
            "title": self.title,
            "url": self.url,
        }


@dataclass(frozen=True)
class AdvisoryMatch:
    """A resolved dependency and one advisory that applies to it."""

    dependency: Dependency
    advisory: Advisory

    def to_dict(self) -> dict:
        return {
            "package": self.dependency.name,
            "version": str(self.dependency.resolved_version),
            "advisory": self.advisory.to_dict(),
        }


def match_sort_key(match: AdvisoryMatch) -> tuple:
    """Descending severity, then advisory id, then package name."""
    return (-match.advisory.severity.rank, match.advisory.id, match.dependency.name)
