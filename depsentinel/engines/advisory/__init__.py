"""Advisory engine — vulnerability records and matching."""

from depsentinel.engines.advisory.database import (
    AdvisoryDatabase,
    AdvisorySource,
    UnavailableAdvisorySource,
    open_advisory_source,
)
from depsentinel.engines.advisory.matcher import MatchOutcome, match
from depsentinel.engines.advisory.models import Advisory, AdvisoryMatch, Severity

__all__ = [
    "Advisory",
    "AdvisoryDatabase",
    "AdvisoryMatch",
    "AdvisorySource",
    "MatchOutcome",
    "Severity",
    "UnavailableAdvisorySource",
    "match",
    "open_advisory_source",
]
