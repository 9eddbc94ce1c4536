"""Available-update suggestions for a resolved dependency set."""

from __future__ import annotations

from collections.abc import Iterable

from packaging.version import Version

from depsentinel.engines.advisory.models import Advisory, AdvisoryMatch
from depsentinel.engines.resolver.models import ResolvedDependency, ResolvedSet
from depsentinel.engines.resolver.universe import UniverseView
from depsentinel.engines.scan.models import AvailableUpdate


def compute_updates(
    resolved: ResolvedSet,
    matches: Iterable[AdvisoryMatch],
    view: UniverseView,
    *,
    include_non_security: bool = False,
) -> tuple[AvailableUpdate, ...]:
    """Suggest updates in resolution order.

    Every vulnerable dependency gets a security update. With
    *include_non_security*, every other dependency whose newest known
    release is above the resolved version gets one too.
    """
    by_package: dict[str, list[Advisory]] = {}
    for m in matches:
        by_package.setdefault(m.dependency.name, []).append(m.advisory)

    updates: list[AvailableUpdate] = []
    for dep in resolved:
        advisories = by_package.get(dep.name)
        known = _stable_versions(view, dep)
        if advisories:
            updates.append(
                AvailableUpdate(
                    name=dep.name,
                    current=dep.version,
                    latest=_safe_target(dep.version, known, advisories),
                    latest_allowed=_newest(v for v in known if v in dep.requirement),
                    security=True,
                    advisories=tuple(dict.fromkeys(a.id for a in advisories)),
                )
            )
        elif include_non_security:
            newest = _newest(known)
            if newest is not None and newest > dep.version:
                updates.append(
                    AvailableUpdate(
                        name=dep.name,
                        current=dep.version,
                        latest=newest,
                        latest_allowed=_newest(v for v in known if v in dep.requirement),
                    )
                )
    return tuple(updates)


def _stable_versions(view: UniverseView, dep: ResolvedDependency) -> list[Version]:
    versions = [r.version for r in view.versions(dep.name)]
    if dep.version.is_prerelease:
        return versions
    return [v for v in versions if not v.is_prerelease]


def _newest(versions: Iterable[Version]) -> Version | None:
    return max(versions, default=None)


def _safe_target(
    current: Version, known: list[Version], advisories: list[Advisory]
) -> Version | None:
    safe = [v for v in known if v > current and not any(a.affects(v) for a in advisories)]
    if safe:
        return max(safe)
    # nothing safe is published in the universe; fall back to the fix versions
    fixes = [a.patched_version for a in advisories if a.patched_version is not None]
    return max(fixes, default=None)
