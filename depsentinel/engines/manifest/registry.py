"""Parser registry — match project files to manifest parsers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from depsentinel.engines.manifest.models import Manifest
from depsentinel.exceptions import ManifestNotFound, ProjectNotFound


@runtime_checkable
class ManifestParser(Protocol):
    """Interface that every manifest parser must satisfy."""

    format_name: str
    manifest_file: str
    lock_file: str | None

    def parse(self, manifest_text: str, lock_text: str | None = None) -> Manifest: ...


PARSER_REGISTRY: dict[str, ManifestParser] = {}


def register_parser(parser: ManifestParser) -> None:
    """Register a parser instance by its format name."""
    PARSER_REGISTRY[parser.format_name] = parser


def get_parser(format_name: str) -> ManifestParser:
    try:
        return PARSER_REGISTRY[format_name]
    except KeyError:
        known = ", ".join(sorted(PARSER_REGISTRY))
        raise ValueError(f"unknown manifest format {format_name!r} (known: {known})") from None


def parse_manifest(
    manifest_text: str,
    lock_text: str | None = None,
    format_name: str = "gemfile",
) -> Manifest:
    """Parse raw manifest (and optional lock) text with the named parser."""
    return get_parser(format_name).parse(manifest_text, lock_text)


@dataclass(frozen=True)
class ManifestFiles:
    """Raw manifest and lock text read from a project directory."""

    format_name: str
    manifest_path: Path
    manifest_text: str
    lock_path: Path | None = None
    lock_text: str | None = None


def discover_manifest(project_path: Path) -> ManifestFiles:
    """Validate *project_path* and read the first supported manifest in it.

    Parsers are tried in registration order.
    """
    if not project_path.is_dir():
        raise ProjectNotFound(f"project path does not exist: {project_path}")

    for parser in PARSER_REGISTRY.values():
        manifest_path = project_path / parser.manifest_file
        if not manifest_path.is_file():
            continue
        lock_path: Path | None = None
        lock_text: str | None = None
        if parser.lock_file:
            candidate = project_path / parser.lock_file
            if candidate.is_file():
                lock_path = candidate
                lock_text = candidate.read_text(encoding="utf-8", errors="replace")
        return ManifestFiles(
            format_name=parser.format_name,
            manifest_path=manifest_path,
            manifest_text=manifest_path.read_text(encoding="utf-8", errors="replace"),
            lock_path=lock_path,
            lock_text=lock_text,
        )

    expected = ", ".join(p.manifest_file for p in PARSER_REGISTRY.values())
    raise ManifestNotFound(f"project must contain one of {expected}: {project_path}")
