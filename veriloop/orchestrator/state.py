"""
Request lifecycle state machine.

::

    GATHERING -> DRAFTING -> VERIFYING -> RELEASED
                                       -> RETRYING -> GATHERING
                                       -> FAILED

Text may leave the loop only in RELEASED (a draft that passed verification)
or FAILED (the fixed graceful-failure notice). Any other transition raises.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, List

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    GATHERING = "gathering"
    DRAFTING = "drafting"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    RELEASED = "released"
    FAILED = "failed"


TRANSITIONS: Dict[LoopState, FrozenSet[LoopState]] = {
    LoopState.GATHERING: frozenset({LoopState.DRAFTING}),
    LoopState.DRAFTING: frozenset({LoopState.VERIFYING}),
    LoopState.VERIFYING: frozenset({LoopState.RELEASED, LoopState.RETRYING, LoopState.FAILED}),
    LoopState.RETRYING: frozenset({LoopState.GATHERING}),
    LoopState.RELEASED: frozenset(),
    LoopState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({LoopState.RELEASED, LoopState.FAILED})


class InvalidTransition(RuntimeError):
    """Raised when the loop attempts a transition the table does not allow."""


class LoopStateMachine:
    """Tracks one request's state and records its history."""

    def __init__(self) -> None:
        self.state = LoopState.GATHERING
        self.history: List[LoopState] = [LoopState.GATHERING]

    def transition(self, new_state: LoopState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value} is not allowed")
        logger.debug(f"[Loop] state {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def can_release(self) -> bool:
        """Whether text may be emitted to the caller."""
        return self.state in TERMINAL_STATES
