"""Time adjustment requests, their approval state, and the intake modal."""

from .commands import parse_slash_command
from .modal import SUBMIT_CALLBACK_ID, build_intake_modal
from .models import ActionKind, TimeAdjustmentRequest
from .state import FailureKind, Outcome, StatusTransitionError, WorkflowState, advance_state

__all__ = [
    "ActionKind",
    "TimeAdjustmentRequest",
    "FailureKind",
    "Outcome",
    "StatusTransitionError",
    "WorkflowState",
    "advance_state",
    "SUBMIT_CALLBACK_ID",
    "build_intake_modal",
    "parse_slash_command",
]
