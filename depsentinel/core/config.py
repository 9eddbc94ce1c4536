"""Scanner settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger("depsentinel.config")

DEFAULT_ADVISORY_DB = "~/.local/share/ruby-advisory-db"
DEFAULT_RUBYGEMS_URL = "https://index.rubygems.org"
DEFAULT_PYPI_URL = "https://pypi.org"


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        log.warning("config.invalid_value", variable=name, value=value, default=default)
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        log.warning("config.invalid_value", variable=name, value=value, default=default)
        return default


@dataclass(frozen=True)
class ScannerSettings:
    """Budgets and endpoints shared by every scan in a process."""

    max_iterations: int = 10_000
    max_backtracks: int = 1_000
    resolution_timeout: float = 30.0
    advisory_db_path: str = DEFAULT_ADVISORY_DB
    registry_timeout: float = 10.0
    rubygems_url: str = DEFAULT_RUBYGEMS_URL
    pypi_url: str = DEFAULT_PYPI_URL

    @property
    def advisory_db(self) -> Path:
        return Path(self.advisory_db_path).expanduser()

    @classmethod
    def from_env(cls) -> ScannerSettings:
        """Build settings from ``DEPSENTINEL_*`` variables.

        Unset or unparseable variables fall back to the defaults.
        """
        return cls(
            max_iterations=_int_env("DEPSENTINEL_MAX_ITERATIONS", cls.max_iterations),
            max_backtracks=_int_env("DEPSENTINEL_MAX_BACKTRACKS", cls.max_backtracks),
            resolution_timeout=_float_env(
                "DEPSENTINEL_RESOLUTION_TIMEOUT", cls.resolution_timeout
            ),
            advisory_db_path=os.environ.get("DEPSENTINEL_ADVISORY_DB", DEFAULT_ADVISORY_DB),
            registry_timeout=_float_env("DEPSENTINEL_REGISTRY_TIMEOUT", cls.registry_timeout),
            rubygems_url=os.environ.get("DEPSENTINEL_RUBYGEMS_URL", DEFAULT_RUBYGEMS_URL),
            pypi_url=os.environ.get("DEPSENTINEL_PYPI_URL", DEFAULT_PYPI_URL),
        )
