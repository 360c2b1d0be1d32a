"""Posting and updating approval messages, and best-effort requester notices."""

from __future__ import annotations

from typing import Any, Mapping

import structlog
from slack_sdk.errors import SlackApiError

from timelog_approvals.actions import ApprovalToken
from timelog_approvals.duration import format_minutes, parse_duration
from timelog_approvals.errors import RequestValidationError
from timelog_approvals.slack_client import SlackClient

from .messages import build_approval_message
from .models import ActionKind, TimeAdjustmentRequest
from .state import FailureKind, Outcome, WorkflowState


def _slack_error(exc: SlackApiError) -> tuple[str, int | None]:
    response = getattr(exc, "response", None)
    if response is None:
        return str(exc), None
    return response.get("error") or str(exc), getattr(response, "status_code", None)


def publish_approval_message(
    *,
    client,
    channel_id: str,
    request: TimeAdjustmentRequest,
    token: str,
    logger,
) -> Mapping[str, Any] | None:
    """Post the approval message carrying *token* to the approval channel."""

    slack_client = SlackClient(client=client)
    log = structlog.get_logger().bind(issue_id=request.issue_id, channel=channel_id)
    payload = build_approval_message(request=request, token=token)

    try:
        response = slack_client.post_message(channel=channel_id, text=payload["text"], blocks=payload["blocks"])
    except SlackApiError as exc:
        error_code, status_code = _slack_error(exc)
        log.error("webhook_failed", operation="publish_approval_message", error=error_code, status_code=status_code)
        logger.error(
            "Failed to publish approval message",
            extra={"issue_id": request.issue_id, "channel": channel_id, "error": error_code},
        )
        return None

    log.info("approval_message_posted", ts=response.get("ts"), action_kind=request.action_kind.value)
    return response


def update_approval_message(
    *,
    client,
    channel_id: str,
    ts: str,
    payload: Mapping[str, Any],
    logger,
    operation: str = "update_approval_message",
) -> bool:
    """Rewrite the approval message; returns False when Slack refused the edit."""

    slack_client = SlackClient(client=client)
    log = structlog.get_logger().bind(channel=channel_id, ts=ts)
    try:
        slack_client.update_message(channel=channel_id, ts=ts, text=payload["text"], blocks=payload["blocks"])
    except SlackApiError as exc:
        error_code, status_code = _slack_error(exc)
        log.error("webhook_failed", operation=operation, error=error_code, status_code=status_code)
        logger.error(
            "Failed to update approval message",
            extra={"channel": channel_id, "ts": ts, "error": error_code},
        )
        return False
    return True


class Notifier:
    """Direct messages to requesters.

    Delivery is best effort: ``notify`` never raises and never retries. The
    approval message and the YouTrack audit trail stay authoritative.
    """

    def __init__(self, client) -> None:
        self._slack = SlackClient(client=client)

    def notify(self, requester_id: str, text: str) -> bool:
        log = structlog.get_logger().bind(requester_id=requester_id)
        try:
            self._slack.send_direct_message(user=requester_id, text=text)
        except SlackApiError as exc:
            error_code, _ = _slack_error(exc)
            log.warning("notification_failed", error=error_code)
            return False
        except Exception as exc:  # noqa: BLE001
            log.warning("notification_failed", error=str(exc))
            return False
        log.info("notification_sent")
        return True


def _describe_amount(token: ApprovalToken) -> str:
    try:
        amount = format_minutes(parse_duration(token.duration_text))
    except RequestValidationError:
        amount = token.duration_text
    if token.action_kind is ActionKind.ADD:
        return f"add {amount} ({token.work_type}) to {token.issue_id}"
    return f"remove {amount} ({token.work_type}) from {token.issue_id}"


def describe_submission(request: TimeAdjustmentRequest) -> str:
    return (
        f":inbox_tray: Your request to {_describe_amount(ApprovalToken.from_request(request))} "
        "was sent for approval."
    )


def describe_outcome(token: ApprovalToken, outcome: Outcome) -> str:
    """Text of the direct message telling the requester how their request ended."""

    subject = f"Your request to {_describe_amount(token)}"
    if outcome.state is WorkflowState.APPROVED:
        return f":white_check_mark: {subject} was approved and applied in YouTrack."
    if outcome.state is WorkflowState.REJECTED:
        return f":no_entry_sign: {subject} was rejected."
    if outcome.failure is FailureKind.MISS:
        return (
            f":warning: {subject} was approved, but no matching work item was found, so nothing was removed. "
            "Please verify the logged time manually."
        )
    detail = f" {outcome.detail}" if outcome.detail else ""
    return f":warning: {subject} was approved but could not be applied.{detail}"
