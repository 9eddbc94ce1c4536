"""Parser for pip requirements.txt files."""

from __future__ import annotations

import structlog
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from depsentinel.engines.manifest.models import Dependency, Manifest
from depsentinel.engines.manifest.registry import register_parser
from depsentinel.engines.versioning import VersionRange
from depsentinel.exceptions import InvalidVersionRange, MalformedManifest

log = structlog.get_logger("depsentinel.manifest")

DEFAULT_SOURCE = "https://pypi.org"


def _logical_lines(content: str):
    """Yield ``(lineno, line)`` with backslash continuations joined."""
    buffer = ""
    start = 0
    for lineno, raw_line in enumerate(content.splitlines(), start=1):
        if not buffer:
            start = lineno
        line = raw_line.rstrip()
        if line.endswith("\\"):
            buffer += line[:-1] + " "
            continue
        yield start, buffer + line
        buffer = ""
    if buffer:
        yield start, buffer


class PipRequirementsParser:
    format_name = "pip-requirements"
    manifest_file = "requirements.txt"
    lock_file = None

    def parse(self, manifest_text: str, lock_text: str | None = None) -> Manifest:
        warnings: list[str] = []
        if lock_text is not None:
            warnings.append("requirements.txt has no lock format; lock text ignored")
            log.warning("pip.lock_ignored")

        deps: list[Dependency] = []
        for lineno, raw in _logical_lines(manifest_text):
            line = raw.split(" #", 1)[0].strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith(("-r", "-c", "-e", "--")):
                continue
            if line.startswith(("git+", "hg+", "svn+", "http://", "https://", "file:", ".", "/")):
                warnings.append(f"line {lineno}: unnamed requirement skipped")
                continue
            # per-requirement options such as --hash=sha256:...
            line = line.split(" --", 1)[0].strip()

            try:
                req = Requirement(line)
            except InvalidRequirement as exc:
                raise MalformedManifest(
                    str(exc), source_file=self.manifest_file, line=lineno
                ) from exc

            try:
                requirement = VersionRange.parse(str(req.specifier))
            except InvalidVersionRange as exc:
                raise MalformedManifest(
                    f"{req.name}: {exc}", source_file=self.manifest_file, line=lineno
                ) from exc

            source = f"url:{req.url}" if req.url else DEFAULT_SOURCE
            deps.append(
                Dependency(
                    name=canonicalize_name(req.name),
                    requirement=requirement,
                    source=source,
                )
            )

        return Manifest(format=self.format_name, dependencies=tuple(deps), warnings=tuple(warnings))


register_parser(PipRequirementsParser())
