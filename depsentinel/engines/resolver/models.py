"""Data models for the constraint solver."""

from __future__ import annotations

from dataclasses import dataclass

from packaging.version import Version

from depsentinel.engines.manifest.models import Dependency
from depsentinel.engines.versioning import VersionRange


@dataclass(frozen=True)
class PackageVersion:
    """One published release and the constraints it places on its own dependencies."""

    version: Version
    dependencies: tuple[tuple[str, VersionRange], ...] = ()


@dataclass(frozen=True)
class ConstraintOrigin:
    """A constraint on a package together with the chain that introduced it.

    ``chain`` is empty for constraints declared directly in the manifest,
    otherwise it lists ``"name version"`` labels from a direct dependency
    down to the package that requires this one.
    """

    requirement: VersionRange
    chain: tuple[str, ...] = ()

    def describe(self) -> str:
        via = " -> ".join(self.chain) if self.chain else "manifest"
        return f"{self.requirement} (required by {via})"


@dataclass(frozen=True)
class ConflictReport:
    package: str
    constraints: tuple[ConstraintOrigin, ...]
    reason: str
    immediate: bool = False

    def describe(self) -> str:
        lines = [f"conflict on {self.package}: {self.reason}"]
        lines.extend(f"  {origin.describe()}" for origin in self.constraints)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "reason": self.reason,
            "immediate": self.immediate,
            "constraints": [
                {"requirement": str(o.requirement), "chain": list(o.chain)}
                for o in self.constraints
            ],
        }


@dataclass(frozen=True)
class ResolvedDependency:
    """A package pinned to one version by the solver."""

    name: str
    version: Version
    requirement: VersionRange
    source: str
    direct: bool
    chain: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}"

    def as_dependency(self) -> Dependency:
        return Dependency(
            name=self.name,
            requirement=self.requirement,
            source=self.source,
            resolved_version=self.version,
            groups=self.groups,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": str(self.version),
            "requirement": str(self.requirement),
            "source": self.source,
            "direct": self.direct,
            "chain": list(self.chain),
            "groups": list(self.groups),
        }


@dataclass(frozen=True)
class ResolvedSet:
    """Resolved dependencies in decision order (direct dependencies first)."""

    dependencies: tuple[ResolvedDependency, ...] = ()

    def __iter__(self):
        return iter(self.dependencies)

    def __len__(self) -> int:
        return len(self.dependencies)

    def get(self, name: str) -> ResolvedDependency | None:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    def version_of(self, name: str) -> Version | None:
        dep = self.get(name)
        return dep.version if dep else None

    @property
    def names(self) -> list[str]:
        return [dep.name for dep in self.dependencies]


@dataclass(frozen=True)
class ResolutionStats:
    iterations: int = 0
    backtracks: int = 0
    decisions: int = 0
    lookups: int = 0

    def to_dict(self) -> dict:
        return {
            "iterations": self.iterations,
            "backtracks": self.backtracks,
            "decisions": self.decisions,
            "lookups": self.lookups,
        }
