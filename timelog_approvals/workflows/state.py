"""Workflow states and the outcome of handling an approval message."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WorkflowState(str, Enum):
    COLLECTING = "COLLECTING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPLYING = "APPLYING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


class FailureKind(str, Enum):
    VALIDATION = "validation"
    MISS = "miss"
    TRANSPORT = "transport"
    ERROR = "error"


_TERMINAL_STATES = {WorkflowState.APPROVED, WorkflowState.REJECTED, WorkflowState.FAILED}

_ALLOWED_TRANSITIONS = {
    WorkflowState.COLLECTING: {WorkflowState.AWAITING_APPROVAL},
    WorkflowState.AWAITING_APPROVAL: {WorkflowState.APPLYING, WorkflowState.REJECTED},
    WorkflowState.APPLYING: {WorkflowState.APPROVED, WorkflowState.FAILED},
    WorkflowState.APPROVED: set(),
    WorkflowState.REJECTED: set(),
    WorkflowState.FAILED: set(),
}


class StatusTransitionError(Exception):
    """Raised when an invalid workflow transition is attempted."""


def advance_state(current: WorkflowState, new: WorkflowState) -> WorkflowState:
    """Return *new* if the transition from *current* is allowed."""

    if new not in _ALLOWED_TRANSITIONS[current]:
        raise StatusTransitionError(f"Cannot transition from {current.value} to {new.value}")
    return new


@dataclass(frozen=True)
class Outcome:
    """Terminal result of one approval message."""

    state: WorkflowState
    failure: FailureKind | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        if not self.state.is_terminal:
            raise ValueError(f"{self.state.value} is not a terminal state")
        if (self.state is WorkflowState.FAILED) != (self.failure is not None):
            raise ValueError("failure kind must be set exactly when the outcome failed")

    @classmethod
    def approved(cls, detail: str | None = None) -> "Outcome":
        return cls(WorkflowState.APPROVED, detail=detail)

    @classmethod
    def rejected(cls) -> "Outcome":
        return cls(WorkflowState.REJECTED)

    @classmethod
    def failed(cls, failure: FailureKind, detail: str) -> "Outcome":
        return cls(WorkflowState.FAILED, failure=failure, detail=detail)

    @property
    def is_reconciliation_miss(self) -> bool:
        return self.failure is FailureKind.MISS
