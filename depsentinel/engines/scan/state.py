"""Scan state machine.

``idle -> parsing -> resolving -> matching -> done``; ``resolving`` may
also finish straight to ``done`` when matching is skipped, and every
non-terminal state may move to ``failed``. No state is entered twice.
"""

from __future__ import annotations

from typing import Callable

import structlog

from depsentinel.engines.scan.models import ScanState, StateTransition
from depsentinel.exceptions import InvalidStateTransition

log = structlog.get_logger("depsentinel.scan")

_ALLOWED: dict[ScanState, frozenset[ScanState]] = {
    ScanState.IDLE: frozenset({ScanState.PARSING}),
    ScanState.PARSING: frozenset({ScanState.RESOLVING}),
    ScanState.RESOLVING: frozenset({ScanState.MATCHING, ScanState.DONE}),
    ScanState.MATCHING: frozenset({ScanState.DONE}),
    ScanState.DONE: frozenset(),
    ScanState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({ScanState.DONE, ScanState.FAILED})

TransitionCallback = Callable[[StateTransition], None]


class ScanStateMachine:
    """Track the phases of one scan. Not shared between scans."""

    def __init__(self, project: str = "", callbacks: list[TransitionCallback] | None = None) -> None:
        self.project = project
        self.state = ScanState.IDLE
        self.transitions: list[StateTransition] = []
        self.callbacks: list[TransitionCallback] = list(callbacks or [])
        self._visited = {ScanState.IDLE}

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def failure_reason(self) -> str | None:
        if self.state is ScanState.FAILED and self.transitions:
            return self.transitions[-1].outcome
        return None

    def advance(self, target: ScanState, outcome: str | None = None) -> StateTransition:
        if target is ScanState.FAILED:
            allowed = not self.is_terminal
        else:
            allowed = target in _ALLOWED[self.state]
        if not allowed or target in self._visited:
            raise InvalidStateTransition(self.state.value, target.value)

        transition = StateTransition(source=self.state, target=target, outcome=outcome)
        self.state = target
        self._visited.add(target)
        self.transitions.append(transition)
        log.debug(
            "scan.transition",
            project=self.project,
            source=transition.source.value,
            target=target.value,
            outcome=outcome,
        )
        self._notify(transition)
        return transition

    def fail(self, reason: str) -> StateTransition:
        return self.advance(ScanState.FAILED, outcome=reason)

    def _notify(self, transition: StateTransition) -> None:
        for cb in self.callbacks:
            try:
                cb(transition)
            except Exception:
                log.warning(
                    "scan.callback_error", target=transition.target.value, exc_info=True
                )
