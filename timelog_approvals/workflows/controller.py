"""Approval gate: turns button actuations into tracker mutations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Protocol, Sequence

import structlog
from slack_sdk.errors import SlackApiError
from sqlalchemy.exc import SQLAlchemyError

from timelog_approvals.actions import ApprovalToken, ApproveCommand, Command, RejectCommand, SubmitCommand
from timelog_approvals.duration import format_minutes, parse_duration
from timelog_approvals.errors import RequestValidationError, TrackerTransportError
from timelog_approvals.lookups import IdentityMap, WorkTypeTable
from timelog_approvals.models import DuplicateDecisionError, claim_decision, record_outcome
from timelog_approvals.mutator import TimeLogMutator, WorkItemWriter
from timelog_approvals.reconciler import ReconciliationStatus, TimeTracker, WorkItemReconciler
from timelog_approvals.slack_client import SlackClient

from .messages import build_outcome_update, build_processing_update
from .models import ActionKind
from .notifications import (
    Notifier,
    describe_outcome,
    describe_submission,
    publish_approval_message,
    update_approval_message,
)
from .state import FailureKind, Outcome, WorkflowState, advance_state

ALREADY_HANDLED_TEXT = "This request has already been handled."
UNEXPECTED_FAILURE_TEXT = "Unexpected error while applying this request. Nothing further was attempted; please resubmit."
CLAIM_FAILED_TEXT = "Your decision could not be recorded, so nothing was changed. Please try again."


class WorkflowTracker(TimeTracker, WorkItemWriter, Protocol):
    """Every YouTrack call the approval workflow makes."""


@dataclass(frozen=True)
class WorkflowServices:
    """Collaborators resolved once at startup and shared by every handler."""

    tracker: WorkflowTracker
    identities: IdentityMap
    work_types: WorkTypeTable
    approval_channel_id: str
    channel_name: str = "Slack approval channel"


@dataclass(frozen=True)
class Actuation:
    """Who pressed a button, and on which message."""

    approver_id: str
    channel_id: str
    message_ts: str
    original_blocks: Sequence[Dict[str, Any]] | None = None


class ApprovalController:
    def __init__(self, *, client, services: WorkflowServices, logger) -> None:
        self._client = client
        self._services = services
        self._logger = logger
        self._notifier = Notifier(client)
        self._mutator = TimeLogMutator(
            services.tracker, services.work_types, channel_name=services.channel_name
        )
        self._reconciler = WorkItemReconciler(services.tracker, channel_name=services.channel_name)

    def dispatch(self, command: Command, actuation: Actuation | None = None) -> Outcome | None:
        """Route a decoded command to its handler."""

        if isinstance(command, SubmitCommand):
            self.submit(command)
            return None
        if actuation is None:
            raise ValueError("Approve and reject commands need the actuated message.")
        if isinstance(command, (ApproveCommand, RejectCommand)):
            return self.handle_actuation(command, actuation)
        raise TypeError(f"Unsupported command {type(command).__name__}")

    def submit(self, command: SubmitCommand) -> str | None:
        """Mint the token and post the approval message; returns the token if posted."""

        request = command.request
        log = structlog.get_logger().bind(issue_id=request.issue_id, requester_id=request.requester_id)
        try:
            token = ApprovalToken.from_request(request).encode()
        except ValueError as exc:
            log.warning("token_encode_failed", error=str(exc))
            self._notifier.notify(
                request.requester_id,
                f":warning: Your time adjustment request could not be sent for approval: {exc}",
            )
            return None
        response = publish_approval_message(
            client=self._client,
            channel_id=self._services.approval_channel_id,
            request=request,
            token=token,
            logger=self._logger,
        )
        if response is None:
            self._notifier.notify(
                request.requester_id,
                ":warning: Your time adjustment request could not be posted for approval. Please try again later.",
            )
            return None

        state = advance_state(WorkflowState.COLLECTING, WorkflowState.AWAITING_APPROVAL)
        log.info("request_submitted", state=state.value, action_kind=request.action_kind.value)
        self._notifier.notify(request.requester_id, describe_submission(request))
        return token

    def handle_actuation(self, command: ApproveCommand | RejectCommand, actuation: Actuation) -> Outcome | None:
        """Handle a button press; every path that claims the message ends in a terminal state.

        Returns ``None`` when another actuation already claimed the message.
        """

        try:
            if isinstance(command, ApproveCommand):
                return self.approve(command, actuation)
            return self.reject(command, actuation)
        except Exception:
            structlog.get_logger().exception("actuation_failed", issue_id=command.token.issue_id)
            self._logger.exception(
                "Unexpected error while handling approval actuation",
                extra={"issue_id": command.token.issue_id, "channel": actuation.channel_id},
            )
            outcome = Outcome.failed(FailureKind.ERROR, UNEXPECTED_FAILURE_TEXT)
            self._finalize(command.token, actuation, outcome)
            return outcome

    def reject(self, command: RejectCommand, actuation: Actuation) -> Outcome | None:
        token = command.token
        if not self._claim(token, actuation, decision="REJECTED"):
            return None

        advance_state(WorkflowState.AWAITING_APPROVAL, WorkflowState.REJECTED)
        outcome = Outcome.rejected()
        structlog.get_logger().info("rejected", issue_id=token.issue_id, decided_by=actuation.approver_id)
        self._finalize(token, actuation, outcome)
        return outcome

    def approve(self, command: ApproveCommand, actuation: Actuation) -> Outcome | None:
        token = command.token
        if not self._claim(token, actuation, decision="APPROVED"):
            return None

        update_approval_message(
            client=self._client,
            channel_id=actuation.channel_id,
            ts=actuation.message_ts,
            payload=build_processing_update(
                token=token,
                decided_by=actuation.approver_id,
                original_blocks=actuation.original_blocks,
            ),
            logger=self._logger,
            operation="remove_approval_controls",
        )
        state = advance_state(WorkflowState.AWAITING_APPROVAL, WorkflowState.APPLYING)

        outcome = self._apply(token, approved_by=actuation.approver_id)
        advance_state(state, outcome.state)
        self._finalize(token, actuation, outcome)
        return outcome

    def _apply(self, token: ApprovalToken, *, approved_by: str) -> Outcome:
        log = structlog.get_logger().bind(issue_id=token.issue_id, action_kind=token.action_kind.value)
        try:
            login = self._services.identities.resolve(token.requester_id)
            approver = self._services.identities.display_name(approved_by)
            minutes = parse_duration(token.duration_text)
            if token.action_kind is ActionKind.ADD:
                self._mutator.add_time(
                    issue_id=token.issue_id,
                    minutes=minutes,
                    text=f"Added through the {self._services.channel_name}, approved by {approver}.",
                    author_login=login,
                    work_type=token.work_type,
                    approved_by=approver,
                )
                return Outcome.approved(f"{format_minutes(minutes)} of {token.work_type} logged for {login}.")

            result = self._reconciler.reconcile(
                issue_id=token.issue_id,
                requester_login=login,
                minutes=minutes,
                work_type=token.work_type,
                approved_by=approver,
            )
        except RequestValidationError as exc:
            log.warning("request_invalid", error=str(exc))
            return Outcome.failed(FailureKind.VALIDATION, str(exc))
        except TrackerTransportError as exc:
            return Outcome.failed(FailureKind.TRANSPORT, str(exc))

        if result.status is ReconciliationStatus.DELETED:
            return Outcome.approved(f"Work item {result.deleted_item.id} removed.")
        if result.status is ReconciliationStatus.MISS:
            return Outcome.failed(
                FailureKind.MISS,
                "No work item matched the request; the logged time needs manual verification.",
            )
        return Outcome.failed(FailureKind.TRANSPORT, str(result.error))

    def _claim(self, token: ApprovalToken, actuation: Actuation, *, decision: str) -> bool:
        log = structlog.get_logger().bind(
            issue_id=token.issue_id,
            channel=actuation.channel_id,
            ts=actuation.message_ts,
            decided_by=actuation.approver_id,
        )
        try:
            claim_decision(
                channel_id=actuation.channel_id,
                message_ts=actuation.message_ts,
                token_digest=token.digest,
                issue_id=token.issue_id,
                decision=decision,
                decided_by=actuation.approver_id,
            )
        except DuplicateDecisionError:
            log.info("decision_already_claimed", decision=decision)
            self._tell_actor(actuation, ALREADY_HANDLED_TEXT, log)
            return False
        except SQLAlchemyError as exc:
            log.error("decision_claim_failed", decision=decision, error=str(exc))
            self._tell_actor(actuation, CLAIM_FAILED_TEXT, log)
            return False
        log.info("approval_claimed", decision=decision)
        return True

    def _tell_actor(self, actuation: Actuation, text: str, log) -> None:
        try:
            SlackClient(client=self._client).post_ephemeral(
                channel=actuation.channel_id,
                user=actuation.approver_id,
                text=text,
            )
        except SlackApiError as exc:
            log.warning("ephemeral_failed", error=str(exc))

    def _finalize(self, token: ApprovalToken, actuation: Actuation, outcome: Outcome) -> None:
        log = structlog.get_logger().bind(issue_id=token.issue_id, outcome=outcome.state.value)
        update_approval_message(
            client=self._client,
            channel_id=actuation.channel_id,
            ts=actuation.message_ts,
            payload=build_outcome_update(
                token=token,
                outcome=outcome,
                decided_by=actuation.approver_id,
                original_blocks=actuation.original_blocks,
            ),
            logger=self._logger,
            operation="finalize_approval_message",
        )
        try:
            record_outcome(
                channel_id=actuation.channel_id,
                message_ts=actuation.message_ts,
                outcome=outcome.state.value,
                detail=outcome.detail,
            )
        except SQLAlchemyError:
            self._logger.exception("Failed to record approval outcome", extra={"issue_id": token.issue_id})
        log.info(
            "approval_finalized",
            failure=outcome.failure.value if outcome.failure else None,
            detail=outcome.detail,
        )
        self._notifier.notify(token.requester_id, describe_outcome(token, outcome))
