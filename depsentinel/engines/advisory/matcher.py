"""Advisory matcher — range-based matching of resolved versions to advisories."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from depsentinel.engines.advisory.database import AdvisorySource
from depsentinel.engines.advisory.models import AdvisoryMatch, match_sort_key
from depsentinel.engines.resolver.models import ResolvedSet
from depsentinel.exceptions import AdvisoryDatabaseUnavailable

log = structlog.get_logger("depsentinel.advisory")


@dataclass(frozen=True)
class MatchOutcome:
    matches: tuple[AdvisoryMatch, ...] = ()
    database_unavailable: bool = False
    reason: str | None = None


def match(resolved: ResolvedSet, source: AdvisorySource) -> MatchOutcome:
    """Return every advisory affecting a resolved version.

    Ordered by descending severity, then advisory id. An unavailable source
    yields no matches with ``database_unavailable`` set; it never raises.
    """
    if not source.available:
        reason = source.reason or "advisory source unavailable"
        log.warning("advisory.match_skipped", reason=reason)
        return MatchOutcome(database_unavailable=True, reason=reason)

    found: list[AdvisoryMatch] = []
    try:
        for dep in resolved:
            for advisory in source.advisories_for(dep.name):
                if advisory.affects(dep.version):
                    found.append(AdvisoryMatch(dependency=dep.as_dependency(), advisory=advisory))
    except AdvisoryDatabaseUnavailable as exc:
        log.warning("advisory.match_skipped", reason=str(exc))
        return MatchOutcome(database_unavailable=True, reason=str(exc))

    found.sort(key=match_sort_key)
    log.debug("advisory.matched", dependencies=len(resolved), matches=len(found))
    return MatchOutcome(matches=tuple(found))
