"""Block Kit builders for approval messages and their terminal updates."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from timelog_approvals.actions import APPROVE_ACTION_ID, REJECT_ACTION_ID, ApprovalToken

from .models import ActionKind, TimeAdjustmentRequest
from .state import FailureKind, Outcome, WorkflowState

DECISION_BLOCK_ID = "timelog_decision_buttons"
STATUS_BLOCK_ID = "timelog_status"

_MISSING_VALUE = "_Not provided_"

_STATE_EMOJI = {
    WorkflowState.APPLYING: ":hourglass_flowing_sand:",
    WorkflowState.APPROVED: ":white_check_mark:",
    WorkflowState.REJECTED: ":no_entry_sign:",
    WorkflowState.FAILED: ":warning:",
}

_FAILURE_LABEL = {
    FailureKind.VALIDATION: "Could not be applied",
    FailureKind.MISS: "No matching work item found",
    FailureKind.TRANSPORT: "YouTrack call failed",
    FailureKind.ERROR: "Unexpected error",
}


def _format_field(label: str, value: Any) -> str:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return f"*{label}:*\n{_MISSING_VALUE}"
    return f"*{label}:*\n{value}"


def _summary_blocks(
    *,
    issue_id: str,
    duration_text: str,
    requester_id: str,
    work_type: str,
    action_kind: ActionKind,
    reason: str | None,
) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Time adjustment: {action_kind.label}", "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": _format_field("Requester", f"<@{requester_id}>")},
                {"type": "mrkdwn", "text": _format_field("Issue", f"`{issue_id}`")},
                {"type": "mrkdwn", "text": _format_field("Duration", duration_text)},
                {"type": "mrkdwn", "text": _format_field("Work type", work_type)},
            ],
        },
    ]
    if reason is not None:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": _format_field("Reason", reason)}})
    return blocks


def _decision_buttons(token: str) -> Dict[str, Any]:
    return {
        "type": "actions",
        "block_id": DECISION_BLOCK_ID,
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Approve", "emoji": True},
                "style": "primary",
                "action_id": APPROVE_ACTION_ID,
                "value": token,
            },
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Reject", "emoji": True},
                "style": "danger",
                "action_id": REJECT_ACTION_ID,
                "value": token,
                "confirm": {
                    "title": {"type": "plain_text", "text": "Reject request"},
                    "text": {
                        "type": "mrkdwn",
                        "text": "Are you sure you want to reject this time adjustment?",
                    },
                    "confirm": {"type": "plain_text", "text": "Reject"},
                    "deny": {"type": "plain_text", "text": "Cancel"},
                },
            },
        ],
    }


def build_approval_message(*, request: TimeAdjustmentRequest, token: str) -> Dict[str, Any]:
    """Build the message posted to the approval channel for a new request."""

    blocks = _summary_blocks(
        issue_id=request.issue_id,
        duration_text=request.duration_text,
        requester_id=request.requester_id,
        work_type=request.work_type,
        action_kind=request.action_kind,
        reason=request.reason,
    )
    blocks.append(_decision_buttons(token))
    return {
        "text": f"<@{request.requester_id}> requested: {request.action_kind.label} "
        f"{request.duration_text} on {request.issue_id}.",
        "blocks": blocks,
    }


def _carry_over_blocks(token: ApprovalToken, original_blocks: Sequence[Dict[str, Any]] | None) -> List[Dict[str, Any]]:
    """Keep what the approver saw, minus controls and any previous status line."""

    if not original_blocks:
        return _summary_blocks(
            issue_id=token.issue_id,
            duration_text=token.duration_text,
            requester_id=token.requester_id,
            work_type=token.work_type,
            action_kind=token.action_kind,
            reason=None,
        )
    return [
        dict(block)
        for block in original_blocks
        if block.get("type") != "actions" and block.get("block_id") != STATUS_BLOCK_ID
    ]


def _status_block(text: str) -> Dict[str, Any]:
    return {
        "type": "context",
        "block_id": STATUS_BLOCK_ID,
        "elements": [{"type": "mrkdwn", "text": text}],
    }


def build_processing_update(
    *,
    token: ApprovalToken,
    decided_by: str,
    original_blocks: Sequence[Dict[str, Any]] | None = None,
) -> Dict[str, Any]:
    """Message body shown while an approved request is being applied."""

    text = f"{_STATE_EMOJI[WorkflowState.APPLYING]} Approved by <@{decided_by}>, applying to YouTrack..."
    blocks = _carry_over_blocks(token, original_blocks)
    blocks.append(_status_block(text))
    return {"text": f"Time adjustment on {token.issue_id} is being applied.", "blocks": blocks}


def describe_outcome_status(outcome: Outcome, decided_by: str) -> str:
    emoji = _STATE_EMOJI[outcome.state]
    if outcome.state is WorkflowState.APPROVED:
        line = f"{emoji} Approved by <@{decided_by}>"
    elif outcome.state is WorkflowState.REJECTED:
        line = f"{emoji} Rejected by <@{decided_by}>"
    else:
        line = f"{emoji} Approved by <@{decided_by}> but failed: {_FAILURE_LABEL[outcome.failure]}"
    if outcome.detail:
        line = f"{line}. {outcome.detail}"
    return line


def build_outcome_update(
    *,
    token: ApprovalToken,
    outcome: Outcome,
    decided_by: str,
    original_blocks: Sequence[Dict[str, Any]] | None = None,
) -> Dict[str, Any]:
    """Return the terminal message body; it never contains interactive controls."""

    status = describe_outcome_status(outcome, decided_by)
    blocks = _carry_over_blocks(token, original_blocks)
    blocks.append(_status_block(status))
    return {
        "text": f"Time adjustment on {token.issue_id}: {outcome.state.value.lower()}.",
        "blocks": blocks,
    }
