"""Parsing of intake modal submissions into time adjustment requests."""

from __future__ import annotations

import json
from typing import Any, Dict

from pydantic import BaseModel, ValidationError

from timelog_approvals.duration import parse_duration
from timelog_approvals.errors import RequestValidationError
from timelog_approvals.lookups import WorkTypeTable

from .modal import DURATION_BLOCK_ID, ISSUE_BLOCK_ID, REASON_BLOCK_ID, WORK_TYPE_BLOCK_ID
from .models import ActionKind, TimeAdjustmentRequest


class SubmissionError(ValueError):
    """Raised with per-block messages Slack can show inline in the modal."""

    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(f"{block}: {message}" for block, message in errors.items()))
        self.errors = errors


class SelectedOption(BaseModel):
    value: str | None = None


class SubmissionValue(BaseModel):
    """A single control value coming from Slack modal state."""

    value: str | None = None
    selected_option: SelectedOption | None = None

    @property
    def text(self) -> str:
        if self.selected_option is not None and self.selected_option.value:
            return self.selected_option.value.strip()
        return (self.value or "").strip()


class SubmissionState(BaseModel):
    values: Dict[str, Dict[str, SubmissionValue]]


def parse_action_kind(private_metadata: str) -> ActionKind:
    """Read the action kind the modal was opened for."""

    try:
        metadata = json.loads(private_metadata or "{}")
        return ActionKind(metadata.get("action_kind"))
    except (json.JSONDecodeError, AttributeError, ValueError) as exc:
        raise SubmissionError({"general": "Request metadata is invalid. Please run the command again."}) from exc


def _field(state: SubmissionState, block_id: str) -> str:
    block = state.values.get(block_id, {})
    if block_id in block:
        return block[block_id].text
    # fall back to the first control of the block
    return next(iter(block.values()), SubmissionValue()).text


def parse_submission(
    state_payload: Dict[str, Any],
    *,
    action_kind: ActionKind,
    requester_id: str,
    work_types: WorkTypeTable,
) -> TimeAdjustmentRequest:
    """Validate a modal submission and return the request it describes."""

    try:
        state = SubmissionState.model_validate(state_payload)
    except ValidationError as exc:
        raise SubmissionError({"general": "Invalid submission payload."}) from exc

    errors: Dict[str, str] = {}
    issue_id = _field(state, ISSUE_BLOCK_ID)
    duration_text = _field(state, DURATION_BLOCK_ID)
    work_type = _field(state, WORK_TYPE_BLOCK_ID)
    reason = _field(state, REASON_BLOCK_ID)

    try:
        if parse_duration(duration_text) == 0:
            errors[DURATION_BLOCK_ID] = "Duration must be greater than zero."
    except RequestValidationError as exc:
        errors[DURATION_BLOCK_ID] = str(exc)

    if work_type not in work_types:
        errors[WORK_TYPE_BLOCK_ID] = "Select one of the configured work types."

    if not reason:
        errors[REASON_BLOCK_ID] = "Please explain why the adjustment is needed."

    try:
        request = TimeAdjustmentRequest(
            issue_id=issue_id,
            duration_text=duration_text,
            requester_id=requester_id,
            work_type=work_type,
            reason=reason,
            action_kind=action_kind,
        )
    except ValidationError as exc:
        for error in exc.errors():
            field = str(error["loc"][0]) if error["loc"] else "general"
            block = {
                "issue_id": ISSUE_BLOCK_ID,
                "duration_text": DURATION_BLOCK_ID,
                "work_type": WORK_TYPE_BLOCK_ID,
                "reason": REASON_BLOCK_ID,
            }.get(field, "general")
            errors.setdefault(block, error["msg"].removeprefix("Value error, "))
        raise SubmissionError(errors) from exc

    if errors:
        raise SubmissionError(errors)
    return request
