"""Constraint solver engine — pick one version per dependency."""

from depsentinel.engines.resolver.models import (
    ConflictReport,
    ConstraintOrigin,
    PackageVersion,
    ResolutionStats,
    ResolvedDependency,
    ResolvedSet,
)
from depsentinel.engines.resolver.solver import ConstraintSolver, resolve
from depsentinel.engines.resolver.universe import (
    LockSnapshotUniverse,
    PyPIUniverse,
    RubyGemsUniverse,
    StaticVersionUniverse,
    UniverseView,
    VersionUniverse,
)

__all__ = [
    "ConflictReport",
    "ConstraintOrigin",
    "ConstraintSolver",
    "LockSnapshotUniverse",
    "PackageVersion",
    "PyPIUniverse",
    "ResolutionStats",
    "ResolvedDependency",
    "ResolvedSet",
    "RubyGemsUniverse",
    "StaticVersionUniverse",
    "UniverseView",
    "VersionUniverse",
    "resolve",
]
