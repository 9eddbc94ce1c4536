"""Version ranges — predicates over ``packaging`` versions.

A :class:`VersionRange` is stored as a normalized union of disjoint
intervals, so intersection, union and complement are closed operations and
an unsatisfiable range is simply one with no intervals.

Accepted operators (comma-separated terms are ANDed)::

    = 1.0   == 1.0   === 1.0     exact
    != 1.0  != 1.*               exclusion
    > >= < <=                    inclusive / exclusive bounds
    ~> 2.2  (Ruby)  ~= 2.2 (PEP 440)   pessimistic
    == 1.4.*                     prefix match
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from packaging.version import InvalidVersion, Version

from depsentinel.exceptions import InvalidVersionRange

_TERM_RE = re.compile(r"^(~>|~=|===|==|!=|>=|<=|>|<|=)?\s*(\S+)$")

# Ruby platform suffix on locked gem versions: 1.15.4-x86_64-linux
_PLATFORM_RE = re.compile(r"^([0-9][^-]*)-[A-Za-z].*$")

_ANY_EXPRESSIONS = {"", "*", ">= 0", ">=0"}


def parse_version(text: str) -> Version:
    """Parse a version string, stripping a Ruby platform suffix."""
    raw = text.strip()
    m = _PLATFORM_RE.match(raw)
    if m:
        raw = m.group(1)
    try:
        return Version(raw)
    except InvalidVersion as exc:
        raise InvalidVersionRange(f"invalid version {text!r}") from exc


@dataclass(frozen=True, order=False)
class Bound:
    version: Version
    inclusive: bool


@dataclass(frozen=True)
class Interval:
    """A contiguous span; ``None`` bounds are unbounded."""

    lower: Bound | None = None
    upper: Bound | None = None

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower.version:
                return False
            if version == self.lower.version and not self.lower.inclusive:
                return False
        if self.upper is not None:
            if version > self.upper.version:
                return False
            if version == self.upper.version and not self.upper.inclusive:
                return False
        return True

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower.version > self.upper.version:
            return True
        if self.lower.version == self.upper.version:
            return not (self.lower.inclusive and self.upper.inclusive)
        return False

    def intersect(self, other: Interval) -> Interval:
        return Interval(_max_lower(self.lower, other.lower), _min_upper(self.upper, other.upper))


def _max_lower(a: Bound | None, b: Bound | None) -> Bound | None:
    if a is None:
        return b
    if b is None:
        return a
    if a.version != b.version:
        return a if a.version > b.version else b
    return a if not a.inclusive else b


def _min_upper(a: Bound | None, b: Bound | None) -> Bound | None:
    if a is None:
        return b
    if b is None:
        return a
    if a.version != b.version:
        return a if a.version < b.version else b
    return a if not a.inclusive else b


def _lower_key(interval: Interval) -> tuple:
    if interval.lower is None:
        return (0, Version("0"), 0)
    return (1, interval.lower.version, 0 if interval.lower.inclusive else 1)


def _touches(left: Interval, right: Interval) -> bool:
    """True if *right* (starting at or after *left*) overlaps or abuts *left*."""
    if left.upper is None or right.lower is None:
        return True
    if left.upper.version > right.lower.version:
        return True
    if left.upper.version == right.lower.version:
        return left.upper.inclusive or right.lower.inclusive
    return False


def _max_upper(a: Bound | None, b: Bound | None) -> Bound | None:
    if a is None or b is None:
        return None
    if a.version != b.version:
        return a if a.version > b.version else b
    return a if a.inclusive else b


def _normalize(intervals: Iterable[Interval]) -> tuple[Interval, ...]:
    spans = sorted((i for i in intervals if not i.is_empty()), key=_lower_key)
    merged: list[Interval] = []
    for span in spans:
        if merged and _touches(merged[-1], span):
            last = merged[-1]
            merged[-1] = Interval(last.lower, _max_upper(last.upper, span.upper))
        else:
            merged.append(span)
    return tuple(merged)


def _bump(version: Version) -> Version:
    """Next release for a pessimistic constraint: ~> 2.2 -> 3, ~> 2.2.0 -> 2.3."""
    release = list(version.release)
    if len(release) > 1:
        release = release[:-1]
    release[-1] += 1
    return Version(".".join(str(part) for part in release))


def _prefix_interval(prefix: str) -> Interval:
    base = Version(prefix)
    release = list(base.release)
    release[-1] += 1
    upper = Version(".".join(str(part) for part in release))
    return Interval(Bound(base, True), Bound(upper, False))


def _term_intervals(op: str, raw: str) -> tuple[Interval, ...]:
    if raw.endswith(".*"):
        if op not in ("==", "!=", "="):
            raise InvalidVersionRange(f"wildcard only allowed with == or !=: {op}{raw}")
        try:
            span = _prefix_interval(raw[:-2])
        except InvalidVersion as exc:
            raise InvalidVersionRange(f"invalid version {raw!r}") from exc
        if op == "!=":
            return VersionRange((span,)).complement().intervals
        return (span,)

    version = parse_version(raw)
    if op in ("", "=", "==", "==="):
        return (Interval(Bound(version, True), Bound(version, True)),)
    if op == "!=":
        return (
            Interval(None, Bound(version, False)),
            Interval(Bound(version, False), None),
        )
    if op == ">":
        return (Interval(Bound(version, False), None),)
    if op == ">=":
        return (Interval(Bound(version, True), None),)
    if op == "<":
        return (Interval(None, Bound(version, False)),)
    if op == "<=":
        return (Interval(None, Bound(version, True)),)
    if op in ("~>", "~="):
        if op == "~=" and len(version.release) < 2:
            raise InvalidVersionRange(f"~= needs at least two release segments: {raw!r}")
        return (Interval(Bound(version, True), Bound(_bump(version), False)),)
    raise InvalidVersionRange(f"unknown operator {op!r}")


@dataclass(frozen=True)
class VersionRange:
    """A set of versions; equality compares the normalized intervals only."""

    intervals: tuple[Interval, ...]
    expression: str = field(default="", compare=False)
    allows_prereleases: bool = field(default=False, compare=False)

    # ── constructors ─────────────────────────────────────────────────────

    @classmethod
    def any(cls) -> VersionRange:
        return cls((Interval(),), ">= 0")

    @classmethod
    def empty(cls) -> VersionRange:
        return cls((), "<unsatisfiable>")

    @classmethod
    def exact(cls, version: Version | str) -> VersionRange:
        v = parse_version(version) if isinstance(version, str) else version
        return cls((Interval(Bound(v, True), Bound(v, True)),), f"= {v}", v.is_prerelease)

    @classmethod
    def parse(cls, expression: str) -> VersionRange:
        """Parse a comma-separated AND of constraint terms."""
        text = " ".join(expression.split())
        if text in _ANY_EXPRESSIONS:
            return cls.any()

        result: tuple[Interval, ...] = (Interval(),)
        prerelease = False
        for term in text.split(","):
            term = term.strip()
            if not term:
                raise InvalidVersionRange(f"empty term in constraint {expression!r}")
            m = _TERM_RE.match(term.replace(" ", ""))
            if not m:
                raise InvalidVersionRange(f"cannot parse constraint term {term!r}")
            op, raw = m.group(1) or "", m.group(2)
            term_range = cls(_normalize(_term_intervals(op, raw)))
            result = cls(result).intersect(term_range).intervals
            if not raw.endswith(".*") and parse_version(raw).is_prerelease:
                prerelease = True
        return cls(result, text, prerelease)

    # ── predicates ───────────────────────────────────────────────────────

    def __contains__(self, version: object) -> bool:
        if isinstance(version, str):
            version = parse_version(version)
        if not isinstance(version, Version):
            return False
        return any(span.contains(version) for span in self.intervals)

    def is_empty(self) -> bool:
        return not self.intervals

    def is_any(self) -> bool:
        return self.intervals == (Interval(),)

    def satisfiable_by(self, versions: Iterable[Version]) -> bool:
        return any(v in self for v in versions)

    def filter(self, versions: Iterable[Version]) -> list[Version]:
        return [v for v in versions if v in self]

    # ── algebra ──────────────────────────────────────────────────────────

    def intersect(self, other: VersionRange) -> VersionRange:
        spans = [a.intersect(b) for a in self.intervals for b in other.intervals]
        return VersionRange(
            _normalize(spans),
            _join(self.expression, other.expression, ", "),
            self.allows_prereleases or other.allows_prereleases,
        )

    def union(self, other: VersionRange) -> VersionRange:
        return VersionRange(
            _normalize(self.intervals + other.intervals),
            _join(self.expression, other.expression, " || "),
            self.allows_prereleases or other.allows_prereleases,
        )

    def complement(self) -> VersionRange:
        gaps: list[Interval] = []
        cursor: Bound | None = None
        open_end = True
        for span in self.intervals:
            if span.lower is not None:
                gaps.append(Interval(cursor, Bound(span.lower.version, not span.lower.inclusive)))
            if span.upper is None:
                open_end = False
                break
            cursor = Bound(span.upper.version, not span.upper.inclusive)
        if open_end:
            gaps.append(Interval(cursor, None))
        expression = f"not ({self.expression})" if self.expression else ""
        return VersionRange(_normalize(gaps), expression, self.allows_prereleases)

    def __str__(self) -> str:
        if self.expression:
            return self.expression
        if self.is_empty():
            return "<unsatisfiable>"
        return " || ".join(_describe(span) for span in self.intervals)


def _join(left: str, right: str, sep: str) -> str:
    if not left:
        return right
    if not right:
        return left
    return f"{left}{sep}{right}"


def _describe(span: Interval) -> str:
    if span.lower is None and span.upper is None:
        return ">= 0"
    if span.lower is not None and span.upper is not None and span.lower == span.upper:
        return f"= {span.lower.version}"
    parts = []
    if span.lower is not None:
        parts.append(f"{'>=' if span.lower.inclusive else '>'} {span.lower.version}")
    if span.upper is not None:
        parts.append(f"{'<=' if span.upper.inclusive else '<'} {span.upper.version}")
    return ", ".join(parts)


def intersect_all(ranges: Iterable[VersionRange]) -> VersionRange:
    """AND every range together; the empty iterable yields ``any``."""
    result: VersionRange | None = None
    for item in ranges:
        result = item if result is None else result.intersect(item)
    return result if result is not None else VersionRange.any()
