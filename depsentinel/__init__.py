"""depsentinel: dependency resolution and security advisory scanner."""

__version__ = "0.1.0"

from depsentinel.engines.advisory import (
    Advisory,
    AdvisoryDatabase,
    AdvisoryMatch,
    Severity,
    open_advisory_source,
)
from depsentinel.engines.manifest import Dependency, Manifest, parse_manifest
from depsentinel.engines.resolver import ConstraintSolver, ResolvedSet, StaticVersionUniverse
from depsentinel.engines.scan import (
    DetailLevel,
    OutputFormat,
    ScanOptions,
    ScanOrchestrator,
    ScanResult,
    ScanStatus,
)
from depsentinel.engines.versioning import VersionRange

__all__ = [
    "Advisory",
    "AdvisoryDatabase",
    "AdvisoryMatch",
    "ConstraintSolver",
    "Dependency",
    "DetailLevel",
    "Manifest",
    "OutputFormat",
    "ResolvedSet",
    "ScanOptions",
    "ScanOrchestrator",
    "ScanResult",
    "ScanStatus",
    "Severity",
    "StaticVersionUniverse",
    "VersionRange",
    "open_advisory_source",
]
