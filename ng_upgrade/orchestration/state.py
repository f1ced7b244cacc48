"""
Orchestrator state machine.

Pure transition logic: no I/O, no notifications. The orchestrator drives the
machine and publishes the resulting state changes itself.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..exceptions import StateTransitionError


class OrchestratorState(Enum):
    """States of one orchestration run."""
    IDLE = "idle"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    VALIDATING_PREREQUISITES = "validating-prerequisites"
    EXECUTING_STEPS = "executing-steps"
    FINAL_VALIDATING = "final-validating"
    ROLLING_BACK = "rolling-back"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


S = OrchestratorState

TRANSITIONS: Dict[OrchestratorState, FrozenSet[OrchestratorState]] = {
    S.IDLE: frozenset({S.ANALYZING}),
    S.ANALYZING: frozenset({S.PLANNING, S.FAILED}),
    S.PLANNING: frozenset({S.VALIDATING_PREREQUISITES, S.FAILED}),
    S.VALIDATING_PREREQUISITES: frozenset({S.EXECUTING_STEPS, S.FAILED}),
    S.EXECUTING_STEPS: frozenset({S.EXECUTING_STEPS, S.FINAL_VALIDATING, S.ROLLING_BACK, S.FAILED}),
    S.FINAL_VALIDATING: frozenset({S.SUCCEEDED, S.ROLLING_BACK, S.FAILED}),
    S.ROLLING_BACK: frozenset({S.FAILED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({S.SUCCEEDED, S.FAILED})


class UpgradeStateMachine:
    """Tracks the state of one run and rejects transitions outside the table."""

    def __init__(self):
        self.state = OrchestratorState.IDLE
        self.step_index: Optional[int] = None
        self.history: List[Tuple[OrchestratorState, Optional[int]]] = [(self.state, None)]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, new_state: OrchestratorState) -> bool:
        return new_state in TRANSITIONS[self.state]

    def transition(self, new_state: OrchestratorState, step_index: Optional[int] = None) -> OrchestratorState:
        """
        Move to a new state.

        Args:
            new_state: State to enter
            step_index: Index of the step being executed, for EXECUTING_STEPS

        Returns:
            The previous state

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        if not self.can_transition(new_state):
            raise StateTransitionError(self.state.value, new_state.value)

        previous = self.state
        self.state = new_state
        self.step_index = step_index if new_state == OrchestratorState.EXECUTING_STEPS else None
        self.history.append((new_state, self.step_index))
        return previous
