"""Version universe providers — where the solver learns which releases exist.

Every provider implements :class:`VersionUniverse`. Providers raise
:class:`VersionUniverseUnavailable` when a package cannot be looked up; the
per-scan :class:`UniverseView` turns that into a recorded warning so the
package is excluded from resolution instead of failing the scan.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from packaging.version import InvalidVersion, Version

from depsentinel.engines.manifest.models import LockSnapshot
from depsentinel.engines.resolver.models import PackageVersion
from depsentinel.engines.versioning import VersionRange, parse_version
from depsentinel.exceptions import InvalidVersionRange, VersionUniverseUnavailable

log = structlog.get_logger("depsentinel.universe")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds


@runtime_checkable
class VersionUniverse(Protocol):
    """Known published releases of a package."""

    def versions(self, name: str) -> list[PackageVersion]: ...


class StaticVersionUniverse:
    """In-memory universe, built from a mapping or a JSON index file.

    Accepted shapes per package::

        {"rack": ["2.2.6", "3.0.0"]}
        {"rails": {"7.0.4": {"rack": ">= 2.2, < 3"}}}
    """

    def __init__(self, packages: Mapping[str, Any]) -> None:
        self._packages: dict[str, tuple[PackageVersion, ...]] = {
            name: tuple(self._releases(name, spec)) for name, spec in packages.items()
        }

    @staticmethod
    def _releases(name: str, spec: Any) -> list[PackageVersion]:
        if isinstance(spec, Mapping):
            items = spec.items()
        else:
            items = ((version, {}) for version in spec)
        releases = []
        for version, deps in items:
            deps = deps or {}
            releases.append(
                PackageVersion(
                    version=parse_version(str(version)),
                    dependencies=tuple(
                        (dep_name, VersionRange.parse(str(expr))) for dep_name, expr in deps.items()
                    ),
                )
            )
        return releases

    @classmethod
    def from_json(cls, path: Path) -> StaticVersionUniverse:
        """Load ``{"packages": {...}}`` (or the bare mapping) from *path*."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict) and isinstance(data.get("packages"), dict):
            data = data["packages"]
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object of packages")
        return cls(data)

    def versions(self, name: str) -> list[PackageVersion]:
        try:
            return list(self._packages[name])
        except KeyError:
            raise VersionUniverseUnavailable(name, "not in version index") from None


class LockSnapshotUniverse:
    """Universe holding exactly the versions pinned by a lock snapshot.

    Used for offline scans: resolution then confirms the lock against the
    manifest constraints.
    """

    def __init__(self, lock: LockSnapshot | None) -> None:
        self._lock = lock or LockSnapshot()

    def versions(self, name: str) -> list[PackageVersion]:
        spec = self._lock.get(name)
        if spec is None:
            raise VersionUniverseUnavailable(name, "not in lock snapshot")
        return [PackageVersion(version=spec.version, dependencies=spec.dependencies)]


class UniverseView:
    """Per-scan memo over a universe.

    Each package is looked up at most once. Unavailable packages resolve to
    an empty release list and are remembered in :attr:`unavailable`.
    Not shared between scans.
    """

    def __init__(self, universe: VersionUniverse) -> None:
        self._universe = universe
        self._cache: dict[str, list[PackageVersion]] = {}
        self.unavailable: dict[str, str] = {}
        self.lookups = 0

    def versions(self, name: str) -> list[PackageVersion]:
        """Releases of *name*, highest version first."""
        if name not in self._cache:
            self.lookups += 1
            try:
                releases = self._universe.versions(name)
            except VersionUniverseUnavailable as exc:
                log.warning("universe.unavailable", package=name, detail=exc.detail)
                self.unavailable[name] = exc.detail
                releases = []
            by_version: dict[Version, PackageVersion] = {}
            for release in releases:
                by_version.setdefault(release.version, release)
            self._cache[name] = sorted(by_version.values(), key=lambda r: r.version, reverse=True)
        return self._cache[name]

    def is_unavailable(self, name: str) -> bool:
        self.versions(name)
        return name in self.unavailable

    @property
    def warnings(self) -> list[str]:
        return [
            f"versions of {name!r} unavailable: {detail}"
            for name, detail in sorted(self.unavailable.items())
        ]


class _RegistryClient:
    """Blocking HTTP client with bounded retries on 5xx and timeouts."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = _MAX_RETRIES,
        retry_delay: float = _RETRY_BASE_DELAY,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": "depsentinel"},
            follow_redirects=True,
        )
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    # ── lifecycle ──────────────────────────────────────────────────────────

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── internal ───────────────────────────────────────────────────────────

    def _get(self, package: str, path: str) -> httpx.Response:
        """GET *path*; any failure becomes :class:`VersionUniverseUnavailable`."""
        last_detail = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                resp = self._client.get(path)
                if resp.status_code == 404:
                    raise VersionUniverseUnavailable(package, "unknown to registry")
                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp
                log.warning(
                    "registry.server_error",
                    path=path,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                )
                last_detail = f"HTTP {resp.status_code}"
            except httpx.TimeoutException:
                log.warning(
                    "registry.timeout",
                    path=path,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                )
                last_detail = "timeout"
            except httpx.HTTPStatusError as exc:
                raise VersionUniverseUnavailable(
                    package, f"HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise VersionUniverseUnavailable(package, str(exc) or type(exc).__name__) from exc

            if attempt < self._max_retries - 1:
                time.sleep(self._retry_delay * (2**attempt))

        raise VersionUniverseUnavailable(package, last_detail)


def parse_compact_index(text: str) -> list[PackageVersion]:
    """Parse a RubyGems compact index ``/info/<gem>`` body.

    Lines look like ``1.0.0 rack:>= 1.0&< 3,rake:>= 0|checksum:...``;
    platform-specific duplicates of one version keep the first line.
    """
    releases: dict[Version, PackageVersion] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line == "---":
            continue
        head, _, rest = line.partition(" ")
        try:
            version = parse_version(head)
        except InvalidVersionRange:
            log.debug("rubygems.version_skipped", line=line)
            continue
        if version in releases:
            continue
        deps_part = rest.split("|", 1)[0].strip()
        deps: list[tuple[str, VersionRange]] = []
        for item in filter(None, deps_part.split(",")):
            dep_name, _, reqs = item.partition(":")
            try:
                deps.append((dep_name.strip(), VersionRange.parse(", ".join(reqs.split("&")))))
            except InvalidVersionRange:
                log.debug("rubygems.requirement_skipped", dependency=dep_name, requirement=reqs)
        releases[version] = PackageVersion(version=version, dependencies=tuple(deps))
    return list(releases.values())


class RubyGemsUniverse(_RegistryClient):
    """Releases from the RubyGems compact index (one request per gem)."""

    def versions(self, name: str) -> list[PackageVersion]:
        resp = self._get(name, f"/info/{name}")
        return parse_compact_index(resp.text)


class PyPIUniverse(_RegistryClient):
    """Releases from the PyPI JSON API.

    PyPI only exposes ``requires_dist`` per release, so releases carry no
    dependency constraints and resolution covers direct requirements only.
    """

    def versions(self, name: str) -> list[PackageVersion]:
        resp = self._get(name, f"/pypi/{name}/json")
        try:
            releases = resp.json().get("releases", {})
        except ValueError as exc:
            raise VersionUniverseUnavailable(name, "invalid JSON from registry") from exc

        result = []
        for raw_version, files in releases.items():
            if files and all(f.get("yanked") for f in files):
                continue
            try:
                result.append(PackageVersion(version=Version(raw_version)))
            except InvalidVersion:
                log.debug("pypi.version_skipped", package=name, version=raw_version)
        return result
