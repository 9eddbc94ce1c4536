"""Manifest model — typed declared and locked dependencies."""

# Ensure parsers are registered before any manifest is parsed.
import depsentinel.engines.manifest.parsers  # noqa: F401
from depsentinel.engines.manifest.models import (
    Dependency,
    LockedSpec,
    LockSnapshot,
    Manifest,
)
from depsentinel.engines.manifest.registry import (
    PARSER_REGISTRY,
    ManifestFiles,
    discover_manifest,
    get_parser,
    parse_manifest,
)

__all__ = [
    "PARSER_REGISTRY",
    "Dependency",
    "LockSnapshot",
    "LockedSpec",
    "Manifest",
    "ManifestFiles",
    "discover_manifest",
    "get_parser",
    "parse_manifest",
]
