"""Tests for the scan state machine."""

from __future__ import annotations

import pytest

from depsentinel.engines.scan import ScanState, ScanStateMachine
from depsentinel.exceptions import InvalidStateTransition


class TestScanStateMachine:
    def test_happy_path(self):
        machine = ScanStateMachine("app")
        for state in (ScanState.PARSING, ScanState.RESOLVING, ScanState.MATCHING):
            machine.advance(state)
        machine.advance(ScanState.DONE, outcome="complete")

        assert machine.state is ScanState.DONE
        assert machine.is_terminal
        assert [t.target for t in machine.transitions] == [
            ScanState.PARSING,
            ScanState.RESOLVING,
            ScanState.MATCHING,
            ScanState.DONE,
        ]
        assert machine.transitions[0].source is ScanState.IDLE
        assert machine.transitions[-1].outcome == "complete"

    def test_resolving_may_finish_without_matching(self):
        machine = ScanStateMachine()
        machine.advance(ScanState.PARSING)
        machine.advance(ScanState.RESOLVING)
        machine.advance(ScanState.DONE, outcome="conflict")
        assert machine.state is ScanState.DONE

    def test_fail_from_any_non_terminal_state(self):
        for steps in ([], [ScanState.PARSING], [ScanState.PARSING, ScanState.RESOLVING]):
            machine = ScanStateMachine()
            for state in steps:
                machine.advance(state)
            machine.fail("MalformedManifest")
            assert machine.state is ScanState.FAILED
            assert machine.failure_reason == "MalformedManifest"

    def test_skipping_a_state_rejected(self):
        machine = ScanStateMachine()
        with pytest.raises(InvalidStateTransition) as exc_info:
            machine.advance(ScanState.RESOLVING)
        assert exc_info.value.current == "idle"
        assert exc_info.value.requested == "resolving"

    def test_no_reentry(self):
        machine = ScanStateMachine()
        machine.advance(ScanState.PARSING)
        with pytest.raises(InvalidStateTransition):
            machine.advance(ScanState.PARSING)

    def test_terminal_states_are_final(self):
        machine = ScanStateMachine()
        machine.fail("boom")
        with pytest.raises(InvalidStateTransition):
            machine.fail("again")
        with pytest.raises(InvalidStateTransition):
            machine.advance(ScanState.PARSING)

    def test_failure_reason_only_when_failed(self):
        machine = ScanStateMachine()
        machine.advance(ScanState.PARSING)
        assert machine.failure_reason is None

    def test_callbacks(self):
        seen = []
        machine = ScanStateMachine(callbacks=[lambda t: seen.append(t.target.value)])
        machine.advance(ScanState.PARSING)
        machine.fail("x")
        assert seen == ["parsing", "failed"]

    def test_callback_error_does_not_break_scan(self):
        def broken(_transition):
            raise RuntimeError("observer bug")

        machine = ScanStateMachine()
        machine.callbacks.append(broken)
        machine.advance(ScanState.PARSING)
        assert machine.state is ScanState.PARSING

    def test_transition_to_dict(self):
        machine = ScanStateMachine()
        data = machine.advance(ScanState.PARSING).to_dict()
        assert data["from"] == "idle"
        assert data["to"] == "parsing"
        assert data["at"]
