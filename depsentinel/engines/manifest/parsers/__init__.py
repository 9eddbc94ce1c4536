"""Manifest parsers — auto-registered on import."""

from depsentinel.engines.manifest.parsers import (
    gemfile,  # noqa: F401
    pip_requirements,  # noqa: F401
)
