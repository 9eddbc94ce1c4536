"""Constraint solver — greedy latest-compatible resolution with backtracking.

Packages are decided in discovery order: direct dependencies in manifest
order, then transitive dependencies in the order they are first required.
For each package the highest release satisfying every constraint gathered
so far is tried first (a still-valid locked version goes ahead of it). A
pick adds its own dependency constraints; if those clash with an existing
pick or leave some package with no admissible version, the pick is
rejected and the next candidate is tried. When every candidate of a
package fails, the failure unwinds to the previous decision point.

Search is bounded by an iteration budget, a backtrack budget and an
optional ``time.monotonic()`` deadline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace

import structlog
from packaging.version import Version

from depsentinel.engines.manifest.models import Dependency, Manifest
from depsentinel.engines.resolver.models import (
    ConflictReport,
    ConstraintOrigin,
    PackageVersion,
    ResolutionStats,
    ResolvedDependency,
    ResolvedSet,
)
from depsentinel.engines.resolver.universe import UniverseView, VersionUniverse
from depsentinel.engines.versioning import VersionRange, intersect_all
from depsentinel.exceptions import ResolutionConflict, ResolutionTimeout

log = structlog.get_logger("depsentinel.solver")

DEFAULT_MAX_ITERATIONS = 10_000
DEFAULT_MAX_BACKTRACKS = 1_000


class _Conflict(Exception):
    def __init__(self, report: ConflictReport) -> None:
        self.report = report
        super().__init__(report.reason)


@dataclass(frozen=True)
class _Pick:
    version: Version
    chain: tuple[str, ...]
    source: str


@dataclass(frozen=True)
class _State:
    picks: dict[str, _Pick]
    constraints: dict[str, tuple[ConstraintOrigin, ...]]
    order: tuple[str, ...]
    excluded: frozenset[str] = frozenset()


@dataclass
class _Decision:
    """A decision point: the state before choosing *name* and what is left to try."""

    state: _State | None
    name: str
    origins: tuple[ConstraintOrigin, ...]
    candidates: list[PackageVersion]
    index: int = 0
    first_conflict: _Conflict | None = None


class ConstraintSolver:
    """Resolve one manifest. Instances are single-use and not thread-safe."""

    def __init__(
        self,
        universe: VersionUniverse | UniverseView,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_backtracks: int = DEFAULT_MAX_BACKTRACKS,
        deadline: float | None = None,
        prefer_locked: bool = True,
    ) -> None:
        self._view = universe if isinstance(universe, UniverseView) else UniverseView(universe)
        self._max_iterations = max_iterations
        self._max_backtracks = max_backtracks
        self._deadline = deadline
        self._prefer_locked = prefer_locked

        self._iterations = 0
        self._backtracks = 0
        self._decisions = 0
        self._roots: dict[str, list[Dependency]] = {}
        self._locked: dict[str, PackageVersion] = {}
        self._lock_sources: dict[str, str] = {}
        self._default_source = ""
        self._best: _State | None = None
        self._notes: list[str] = []

    # ── public ─────────────────────────────────────────────────────────────

    @property
    def stats(self) -> ResolutionStats:
        return ResolutionStats(
            iterations=self._iterations,
            backtracks=self._backtracks,
            decisions=self._decisions,
            lookups=self._view.lookups,
        )

    @property
    def warnings(self) -> list[str]:
        return list(dict.fromkeys(self._view.warnings + self._notes))

    def resolve(self, manifest: Manifest) -> ResolvedSet:
        """Resolve *manifest* or raise ``ResolutionConflict`` / ``ResolutionTimeout``."""
        self._load_manifest(manifest)
        if not self._roots:
            return ResolvedSet()

        initial = _State(
            picks={},
            constraints={
                name: tuple(ConstraintOrigin(d.requirement) for d in decls)
                for name, decls in self._roots.items()
            },
            order=tuple(self._roots),
        )
        try:
            final = self._search(initial)
        except _Conflict as exc:
            log.info(
                "solver.conflict",
                package=exc.report.package,
                reason=exc.report.reason,
                iterations=self._iterations,
                backtracks=self._backtracks,
            )
            raise ResolutionConflict(
                exc.report, partial=self._partial(), stats=self.stats
            ) from None

        resolved = self._build(final)
        log.debug(
            "solver.resolved",
            packages=len(resolved),
            iterations=self._iterations,
            backtracks=self._backtracks,
        )
        return resolved

    # ── setup ──────────────────────────────────────────────────────────────

    def _load_manifest(self, manifest: Manifest) -> None:
        for dep in manifest.dependencies:
            self._roots.setdefault(dep.name, []).append(dep)
            if not self._default_source and dep.from_registry:
                self._default_source = dep.source

        if manifest.lock is not None:
            for spec in manifest.lock.specs:
                self._locked[spec.name] = PackageVersion(spec.version, spec.dependencies)
                if spec.source:
                    self._lock_sources[spec.name] = spec.source

        for name, decls in self._roots.items():
            if len(decls) < 2:
                continue
            if intersect_all(d.requirement for d in decls).is_empty():
                report = ConflictReport(
                    package=name,
                    constraints=tuple(ConstraintOrigin(d.requirement) for d in decls),
                    reason="conflicting direct declarations",
                    immediate=True,
                )
                log.info("solver.direct_conflict", package=name)
                raise ResolutionConflict(report, partial=ResolvedSet(), stats=self.stats)

    # ── search ─────────────────────────────────────────────────────────────

    def _search(self, initial: _State) -> _State:
        """Depth-first search over an explicit stack of decision points."""
        stack: list[_Decision] = []
        state = initial
        while True:
            self._remember(state)
            name = self._next_undecided(state)
            if name is None:
                return state

            origins = state.constraints[name]
            combined = intersect_all(o.requirement for o in origins)
            candidates = self._candidates(name, combined)
            if candidates is None:
                state = replace(state, excluded=state.excluded | {name})
                continue

            conflict: _Conflict | None = None
            if candidates:
                stack.append(_Decision(state, name, origins, candidates))
            else:
                if combined.is_empty():
                    reason = "constraints have no common version"
                else:
                    reason = f"no known version satisfies {combined}"
                conflict = _Conflict(
                    ConflictReport(package=name, constraints=origins, reason=reason)
                )
            state = self._next_child(stack, conflict)

    def _next_child(self, stack: list[_Decision], conflict: _Conflict | None) -> _State:
        """Assign the next untried candidate, unwinding exhausted decision points."""
        while stack:
            decision = stack[-1]
            if conflict is not None:
                decision.first_conflict = decision.first_conflict or conflict
                conflict = None
            while decision.index < len(decision.candidates):
                index = decision.index
                release = decision.candidates[index]
                base = decision.state
                decision.index += 1
                if decision.index == len(decision.candidates):
                    # only conflicts are recorded from here on
                    decision.state = None
                self._tick(decision.name, backtrack=index > 0)
                try:
                    child = self._assign(base, decision.name, release, decision.origins)
                except _Conflict as exc:
                    decision.first_conflict = decision.first_conflict or exc
                    log.debug(
                        "solver.candidate_rejected",
                        package=decision.name,
                        version=str(release.version),
                        conflict_on=exc.report.package,
                    )
                    continue
                self._decisions += 1
                return child
            stack.pop()
            conflict = decision.first_conflict
        raise conflict  # type: ignore[misc]

    def _candidates(self, name: str, combined: VersionRange) -> list[PackageVersion] | None:
        """Ordered candidates for *name*; ``None`` means exclude the package."""
        locked = self._locked.get(name)
        decls = self._roots.get(name)
        if decls and not decls[0].from_registry:
            if locked is None:
                self._notes.append(
                    f"{name} comes from {decls[0].source} and has no lock entry; not resolved"
                )
                return None
            return [locked] if locked.version in combined else []

        releases = self._view.versions(name)
        if not releases and self._view.is_unavailable(name):
            return None

        allow_pre = combined.allows_prereleases or (
            locked is not None and locked.version.is_prerelease
        )
        fits = [r for r in releases if r.version in combined]
        stable = [r for r in fits if allow_pre or not r.version.is_prerelease]
        # prereleases are only a fallback when nothing final fits
        candidates = stable or fits

        if self._prefer_locked and locked is not None:
            candidates.sort(key=lambda r: r.version != locked.version)
        return candidates

    def _assign(
        self,
        state: _State,
        name: str,
        release: PackageVersion,
        origins: tuple[ConstraintOrigin, ...],
    ) -> _State:
        chain = origins[0].chain
        decls = self._roots.get(name)
        if decls:
            source = decls[0].source
        else:
            source = self._lock_sources.get(name, self._default_source)

        picks = dict(state.picks)
        picks[name] = _Pick(version=release.version, chain=chain, source=source)
        constraints = dict(state.constraints)
        order = list(state.order)
        child_chain = chain + (f"{name} {release.version}",)

        for dep_name, requirement in release.dependencies:
            merged = constraints.get(dep_name, ()) + (ConstraintOrigin(requirement, child_chain),)
            constraints[dep_name] = merged
            if dep_name not in order:
                order.append(dep_name)

            picked = picks.get(dep_name)
            if picked is not None:
                if picked.version not in requirement:
                    raise _Conflict(
                        ConflictReport(
                            package=dep_name,
                            constraints=merged,
                            reason=f"{dep_name} {picked.version} already selected",
                        )
                    )
            elif dep_name not in state.excluded:
                if intersect_all(o.requirement for o in merged).is_empty():
                    raise _Conflict(
                        ConflictReport(
                            package=dep_name,
                            constraints=merged,
                            reason="constraints have no common version",
                        )
                    )

        return _State(picks=picks, constraints=constraints, order=tuple(order), excluded=state.excluded)

    def _next_undecided(self, state: _State) -> str | None:
        for name in state.order:
            if name not in state.picks and name not in state.excluded:
                return name
        return None

    def _tick(self, name: str, *, backtrack: bool) -> None:
        self._iterations += 1
        if backtrack:
            self._backtracks += 1
            log.debug("solver.backtrack", package=name, backtracks=self._backtracks)

        if self._iterations > self._max_iterations:
            self._give_up("iteration", f"more than {self._max_iterations} candidates tried")
        if self._backtracks > self._max_backtracks:
            self._give_up("backtrack", f"more than {self._max_backtracks} backtracks")
        if self._deadline is not None and time.monotonic() > self._deadline:
            self._give_up("deadline", "resolution deadline passed")

    def _give_up(self, budget: str, detail: str) -> None:
        log.warning(
            "solver.timeout",
            budget=budget,
            iterations=self._iterations,
            backtracks=self._backtracks,
        )
        raise ResolutionTimeout(budget, detail, partial=self._partial(), stats=self.stats)

    # ── results ────────────────────────────────────────────────────────────

    def _remember(self, state: _State) -> None:
        if self._best is None or len(state.picks) >= len(self._best.picks):
            self._best = state

    def _partial(self) -> ResolvedSet:
        return self._build(self._best) if self._best is not None else ResolvedSet()

    def _build(self, state: _State) -> ResolvedSet:
        deps: list[ResolvedDependency] = []
        for name in state.order:
            pick = state.picks.get(name)
            if pick is None:
                continue
            decls = self._roots.get(name, [])
            groups: list[str] = []
            for decl in decls:
                groups.extend(decl.groups)
            deps.append(
                ResolvedDependency(
                    name=name,
                    version=pick.version,
                    requirement=intersect_all(o.requirement for o in state.constraints[name]),
                    source=pick.source,
                    direct=bool(decls),
                    chain=pick.chain,
                    groups=tuple(dict.fromkeys(groups)),
                )
            )
        return ResolvedSet(tuple(deps))


def resolve(
    manifest: Manifest,
    universe: VersionUniverse | UniverseView,
    *,
    deadline: float | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    max_backtracks: int = DEFAULT_MAX_BACKTRACKS,
    prefer_locked: bool = True,
) -> ResolvedSet:
    """Resolve *manifest* against *universe*; see :class:`ConstraintSolver`."""
    solver = ConstraintSolver(
        universe,
        max_iterations=max_iterations,
        max_backtracks=max_backtracks,
        deadline=deadline,
        prefer_locked=prefer_locked,
    )
    return solver.resolve(manifest)
