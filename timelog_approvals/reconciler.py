"""Locate and delete the work item a correction request refers to."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol, Sequence

import structlog

from .duration import format_minutes
from .errors import TrackerTransportError
from .tracker import WorkItem

APPROVAL_CHANNEL_NAME = "Slack approval channel"


class TimeTracker(Protocol):
    def fetch_work_items(self, issue_id: str) -> Sequence[WorkItem]: ...

    def delete_work_item(self, issue_id: str, work_item_id: str) -> None: ...

    def add_comment(self, issue_id: str, text: str) -> None: ...


class ReconciliationStatus(str, Enum):
    DELETED = "deleted"
    MISS = "miss"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationResult:
    status: ReconciliationStatus
    deleted_item: WorkItem | None = None
    error: TrackerTransportError | None = None
    audit_recorded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is ReconciliationStatus.DELETED


def find_matching_work_item(
    items: Iterable[WorkItem],
    *,
    author_login: str,
    minutes: int,
    work_type: str,
) -> WorkItem | None:
    """Return the first item, in the given order, matching author, duration and type.

    Work items carry no request key, so identical entries are indistinguishable
    and only the first one is ever selected.
    """

    for item in items:
        if item.author_login == author_login and item.minutes == minutes and item.type_name == work_type:
            return item
    return None


class WorkItemReconciler:
    """Best-effort removal of previously logged time, with an audit comment trail."""

    def __init__(self, tracker: TimeTracker, *, channel_name: str = APPROVAL_CHANNEL_NAME) -> None:
        self._tracker = tracker
        self._channel_name = channel_name

    def reconcile(
        self,
        *,
        issue_id: str,
        requester_login: str,
        minutes: int,
        work_type: str,
        approved_by: str,
    ) -> ReconciliationResult:
        log = structlog.get_logger().bind(
            issue_id=issue_id,
            requester_login=requester_login,
            minutes=minutes,
            work_type=work_type,
        )
        duration = format_minutes(minutes)

        try:
            items = list(self._tracker.fetch_work_items(issue_id))
        except TrackerTransportError as exc:
            log.error("work_items_fetch_failed", error=str(exc))
            audited = self._audit(
                issue_id,
                f"Time correction for {requester_login} ({duration}, {work_type}) approved by "
                f"{approved_by} could not be applied: the work items could not be loaded ({exc}). "
                "No time was removed.",
                log,
            )
            return ReconciliationResult(ReconciliationStatus.FAILED, error=exc, audit_recorded=audited)

        match = find_matching_work_item(items, author_login=requester_login, minutes=minutes, work_type=work_type)
        if match is None:
            log.warning("reconciliation_miss", candidates=len(items))
            audited = self._audit(
                issue_id,
                f"Time correction approved by {approved_by} via {self._channel_name}, but no work item by "
                f"{requester_login} of {duration} with type {work_type} was found. Nothing was removed; "
                "please review the logged time manually.",
                log,
            )
            return ReconciliationResult(ReconciliationStatus.MISS, audit_recorded=audited)

        try:
            self._tracker.delete_work_item(issue_id, match.id)
        except TrackerTransportError as exc:
            log.error("work_item_delete_failed", work_item_id=match.id, error=str(exc))
            audited = self._audit(
                issue_id,
                f"Time correction approved by {approved_by} failed: work item {match.id} by "
                f"{requester_login} ({duration}, {work_type}) could not be deleted ({exc}).",
                log,
            )
            return ReconciliationResult(ReconciliationStatus.FAILED, error=exc, audit_recorded=audited)

        log.info("work_item_deleted", work_item_id=match.id)
        audited = self._audit(
            issue_id,
            f"Work item {match.id} by {requester_login} ({duration}, {work_type}) was deleted. "
            f"Correction approved by {approved_by} via {self._channel_name}.",
            log,
        )
        return ReconciliationResult(ReconciliationStatus.DELETED, deleted_item=match, audit_recorded=audited)

    def _audit(self, issue_id: str, text: str, log) -> bool:
        try:
            self._tracker.add_comment(issue_id, text)
        except TrackerTransportError as exc:
            log.error("audit_comment_failed", error=str(exc))
            return False
        return True
