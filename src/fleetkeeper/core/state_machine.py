from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class StepState(str, Enum):
    NOT_STARTED = "not_started"
    ACTION_APPLIED = "action_applied"
    ACTION_FAILED = "action_failed"
    POLLING = "polling"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[StepState, set[StepState]] = {
    StepState.NOT_STARTED: {StepState.ACTION_APPLIED, StepState.ACTION_FAILED},
    StepState.ACTION_APPLIED: {StepState.POLLING},
    StepState.POLLING: {
        StepState.SATISFIED,
        StepState.TIMED_OUT,
        StepState.FAILED,
        StepState.CANCELLED,
    },
}

TERMINAL_STATES = frozenset(
    {
        StepState.ACTION_FAILED,
        StepState.SATISFIED,
        StepState.TIMED_OUT,
        StepState.FAILED,
        StepState.CANCELLED,
    }
)


@dataclass
class StepStateMachine:
    state: StepState = StepState.NOT_STARTED
    history: list[StepState] = field(default_factory=list)

    def transition(self, target: StepState) -> None:
        if self.state == target:
            return
        if target not in _TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid transition: {self.state} -> {target}")
        self.history.append(self.state)
        self.state = target

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES
