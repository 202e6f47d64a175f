"""Tests for the request lifecycle state machine"""

import pytest

from veriloop.orchestrator.state import (
    TERMINAL_STATES,
    TRANSITIONS,
    InvalidTransition,
    LoopState,
    LoopStateMachine,
)


class TestLoopStateMachine:

    def test_happy_path(self):
        machine = LoopStateMachine()
        machine.transition(LoopState.DRAFTING)
        machine.transition(LoopState.VERIFYING)
        machine.transition(LoopState.RELEASED)

        assert machine.can_release is True
        assert machine.history == [
            LoopState.GATHERING,
            LoopState.DRAFTING,
            LoopState.VERIFYING,
            LoopState.RELEASED,
        ]

    def test_retry_cycle(self):
        machine = LoopStateMachine()
        for _ in range(2):
            machine.transition(LoopState.DRAFTING)
            machine.transition(LoopState.VERIFYING)
            machine.transition(LoopState.RETRYING)
            assert machine.can_release is False
            machine.transition(LoopState.GATHERING)
        machine.transition(LoopState.DRAFTING)
        machine.transition(LoopState.VERIFYING)
        machine.transition(LoopState.FAILED)
        assert machine.can_release is True

    def test_cannot_skip_verification(self):
        machine = LoopStateMachine()
        machine.transition(LoopState.DRAFTING)
        with pytest.raises(InvalidTransition):
            machine.transition(LoopState.RELEASED)

    def test_no_text_before_terminal_state(self):
        machine = LoopStateMachine()
        assert machine.can_release is False
        machine.transition(LoopState.DRAFTING)
        assert machine.can_release is False

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_have_no_exits(self, terminal):
        assert TRANSITIONS[terminal] == frozenset()
