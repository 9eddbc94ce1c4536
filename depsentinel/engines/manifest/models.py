"""Data models for parsed manifests and lock snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from packaging.version import Version

from depsentinel.engines.versioning import VersionRange
from depsentinel.exceptions import MalformedManifest

# Sources that are not version registries; such dependencies can only be
# pinned from a lock snapshot.
_NON_REGISTRY_PREFIXES = ("git:", "path:", "url:")


@dataclass(frozen=True)
class Dependency:
    """A single declared dependency."""

    name: str
    requirement: VersionRange
    source: str
    resolved_version: Version | None = None
    groups: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.resolved_version is not None and self.resolved_version not in self.requirement:
            raise ValueError(
                f"{self.name} {self.resolved_version} does not satisfy {self.requirement}"
            )

    @property
    def from_registry(self) -> bool:
        return not self.source.startswith(_NON_REGISTRY_PREFIXES)

    def with_resolved(self, version: Version) -> Dependency:
        return replace(self, resolved_version=version)


@dataclass(frozen=True)
class LockedSpec:
    """One entry of a lock snapshot: an exact version and what it requires."""

    name: str
    version: Version
    dependencies: tuple[tuple[str, VersionRange], ...] = ()
    source: str = ""


@dataclass(frozen=True)
class LockSnapshot:
    specs: tuple[LockedSpec, ...] = ()

    def get(self, name: str) -> LockedSpec | None:
        for spec in self.specs:
            if spec.name == name:
                return spec
        return None

    def version_of(self, name: str) -> Version | None:
        spec = self.get(name)
        return spec.version if spec else None

    @property
    def names(self) -> list[str]:
        return [spec.name for spec in self.specs]

    def closure(self, roots: list[str]) -> set[str]:
        """Names reachable from *roots* through the lock's dependency graph."""
        graph = {spec.name: [dep for dep, _ in spec.dependencies] for spec in self.specs}
        seen: set[str] = set()
        stack = list(roots)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(graph.get(name, []))
        return seen


@dataclass(frozen=True)
class Manifest:
    """Ordered dependency declarations plus an optional lock snapshot.

    Duplicate declarations of one name are preserved; the solver folds
    them (or reports a conflict) before resolving.
    """

    format: str
    dependencies: tuple[Dependency, ...] = ()
    lock: LockSnapshot | None = None
    warnings: tuple[str, ...] = field(default=(), compare=False)

    @property
    def names(self) -> list[str]:
        seen: dict[str, None] = {}
        for dep in self.dependencies:
            seen.setdefault(dep.name, None)
        return list(seen)

    def declarations(self, name: str) -> list[Dependency]:
        return [dep for dep in self.dependencies if dep.name == name]

    def is_empty(self) -> bool:
        return not self.dependencies


def validate_lock_closure(
    dependencies: tuple[Dependency, ...],
    lock: LockSnapshot,
    *,
    source_file: str,
) -> None:
    """Every lock entry must be a declared dependency or reachable from one."""
    roots = [dep.name for dep in dependencies]
    reachable = lock.closure(roots)
    strays = [name for name in lock.names if name not in reachable]
    if strays:
        raise MalformedManifest(
            f"lock entries not reachable from the manifest: {', '.join(sorted(strays))}",
            source_file=source_file,
        )
