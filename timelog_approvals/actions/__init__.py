"""Approval tokens and the commands decoded from Slack interaction payloads."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, Union
from urllib.parse import quote, unquote

from timelog_approvals.workflows.models import ActionKind, TimeAdjustmentRequest

APPROVE_ACTION_ID = "timelog_approve"
REJECT_ACTION_ID = "timelog_reject"

TOKEN_DELIMITER = "|"
# Slack rejects button values longer than this.
MAX_TOKEN_LENGTH = 2000
_TOKEN_ARITY = 5


class TokenDecodeError(ValueError):
    """Raised when an approval token cannot be decoded."""


@dataclass(frozen=True)
class ApprovalToken:
    """Everything needed to apply a request once it is approved.

    The free-text reason is intentionally absent; it is rendered once into the
    approval message and never travels with the token.
    """

    issue_id: str
    duration_text: str
    requester_id: str
    work_type: str
    action_kind: ActionKind

    @classmethod
    def from_request(cls, request: TimeAdjustmentRequest) -> "ApprovalToken":
        return cls(
            issue_id=request.issue_id,
            duration_text=request.duration_text,
            requester_id=request.requester_id,
            work_type=request.work_type,
            action_kind=request.action_kind,
        )

    def encode(self) -> str:
        return encode_token(
            issue_id=self.issue_id,
            duration_text=self.duration_text,
            requester_id=self.requester_id,
            work_type=self.work_type,
            action_kind=self.action_kind,
        )

    @property
    def digest(self) -> str:
        """Stable identifier of this token, used to claim a decision."""

        return hashlib.sha256(self.encode().encode("utf-8")).hexdigest()


def encode_token(
    *,
    issue_id: str,
    duration_text: str,
    requester_id: str,
    work_type: str,
    action_kind: ActionKind | str,
) -> str:
    """Serialise a request into the opaque string carried by the approval buttons."""

    kind = ActionKind(action_kind)
    plain_fields = {"issue_id": issue_id, "duration_text": duration_text, "requester_id": requester_id}
    for name, value in plain_fields.items():
        if not value:
            raise ValueError(f"{name} is required to build an approval token.")
        if TOKEN_DELIMITER in value:
            raise ValueError(f"{name} must not contain '{TOKEN_DELIMITER}'.")
    if not work_type:
        raise ValueError("work_type is required to build an approval token.")

    token = TOKEN_DELIMITER.join(
        [issue_id, duration_text, requester_id, quote(work_type, safe=""), kind.value]
    )
    if len(token) > MAX_TOKEN_LENGTH:
        raise ValueError("Approval token exceeds the Slack button value limit.")
    return token


def decode_token(raw_value: str) -> ApprovalToken:
    """Rebuild an :class:`ApprovalToken` from its encoded form."""

    if not isinstance(raw_value, str) or not raw_value:
        raise TokenDecodeError("Approval token is empty.")

    parts = raw_value.split(TOKEN_DELIMITER)
    if len(parts) != _TOKEN_ARITY:
        raise TokenDecodeError(f"Approval token must have {_TOKEN_ARITY} fields, got {len(parts)}.")

    issue_id, duration_text, requester_id, encoded_work_type, kind = parts
    if not all(parts):
        raise TokenDecodeError("Approval token contains empty fields.")

    try:
        action_kind = ActionKind(kind)
    except ValueError as exc:
        raise TokenDecodeError(f"Unknown action kind '{kind}'.") from exc

    return ApprovalToken(
        issue_id=issue_id,
        duration_text=duration_text,
        requester_id=requester_id,
        work_type=unquote(encoded_work_type),
        action_kind=action_kind,
    )


@dataclass(frozen=True)
class SubmitCommand:
    """Intake modal submitted; the request still awaits an approval message."""

    request: TimeAdjustmentRequest


@dataclass(frozen=True)
class ApproveCommand:
    token: ApprovalToken


@dataclass(frozen=True)
class RejectCommand:
    token: ApprovalToken


Command = Union[SubmitCommand, ApproveCommand, RejectCommand]


def parse_action_command(action_id: str, raw_value: str) -> ApproveCommand | RejectCommand:
    """Decode a button actuation into a typed command."""

    token = decode_token(raw_value)
    if action_id == APPROVE_ACTION_ID:
        return ApproveCommand(token=token)
    if action_id == REJECT_ACTION_ID:
        return RejectCommand(token=token)
    raise TokenDecodeError(f"Unsupported action '{action_id}'.")


def is_user_authorized(user_id: str, allowed_ids: Iterable[str]) -> bool:
    """Return True when the user is in the configured approver list."""

    normalized = {item.strip() for item in allowed_ids if item}
    return user_id in normalized
