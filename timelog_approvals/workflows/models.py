"""Pydantic models describing time adjustment requests."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

_ISSUE_ID_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")
# Matches the issue_id column of decision_claims.
MAX_ISSUE_ID_LENGTH = 64
MAX_DURATION_LENGTH = 32
MAX_REASON_LENGTH = 1000


class ActionKind(str, Enum):
    """Direction of a time adjustment."""

    ADD = "add"
    CORRECT = "correct"

    @property
    def label(self) -> str:
        return "Add time" if self is ActionKind.ADD else "Remove logged time"


class TimeAdjustmentRequest(BaseModel):
    """A requester's ask, alive only until it is folded into an approval token."""

    issue_id: str
    duration_text: str = Field(..., max_length=MAX_DURATION_LENGTH)
    requester_id: str
    work_type: str
    reason: str = Field("", max_length=MAX_REASON_LENGTH)
    action_kind: ActionKind

    @field_validator("issue_id")
    @classmethod
    def validate_issue_id(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if len(cleaned) > MAX_ISSUE_ID_LENGTH:
            raise ValueError(f"Issue id must be at most {MAX_ISSUE_ID_LENGTH} characters.")
        if not _ISSUE_ID_PATTERN.match(cleaned):
            raise ValueError(f"'{value.strip()}' is not a valid issue id (expected e.g. PROJ-123)")
        return cleaned

    @field_validator("duration_text", "work_type", "requester_id")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: str) -> str:
        return (value or "").strip()
