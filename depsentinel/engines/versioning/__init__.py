"""Version parsing and range algebra."""

from depsentinel.engines.versioning.ranges import (
    Bound,
    Interval,
    VersionRange,
    intersect_all,
    parse_version,
)

__all__ = ["Bound", "Interval", "VersionRange", "intersect_all", "parse_version"]
