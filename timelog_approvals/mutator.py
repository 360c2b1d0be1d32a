"""Create new work items for approved time additions."""

from __future__ import annotations

from typing import Protocol

import structlog

from .duration import format_minutes
from .errors import TrackerTransportError
from .lookups import WorkTypeTable
from .reconciler import APPROVAL_CHANNEL_NAME
from .tracker import WorkItem


class WorkItemWriter(Protocol):
    def create_work_item(
        self,
        issue_id: str,
        *,
        minutes: int,
        text: str,
        author_login: str,
        type_id: str,
    ) -> WorkItem: ...

    def add_comment(self, issue_id: str, text: str) -> None: ...


class TimeLogMutator:
    def __init__(
        self,
        tracker: WorkItemWriter,
        work_types: WorkTypeTable,
        *,
        channel_name: str = APPROVAL_CHANNEL_NAME,
    ) -> None:
        self._tracker = tracker
        self._work_types = work_types
        self._channel_name = channel_name

    def add_time(
        self,
        *,
        issue_id: str,
        minutes: int,
        text: str,
        author_login: str,
        work_type: str,
        approved_by: str,
    ) -> WorkItem:
        """Log *minutes* on *issue_id* as *author_login*.

        Raises ``RequestValidationError`` before any tracker call when the work
        type is not configured. A ``TrackerTransportError`` from the create call
        is recorded as an audit comment on the issue, then re-raised.
        """

        type_id = self._work_types.resolve_id(work_type)
        log = structlog.get_logger().bind(issue_id=issue_id, minutes=minutes, work_type=work_type)
        try:
            item = self._tracker.create_work_item(
                issue_id,
                minutes=minutes,
                text=text,
                author_login=author_login,
                type_id=type_id,
            )
        except TrackerTransportError as exc:
            log.error("work_item_create_failed", error=str(exc))
            self._audit(
                issue_id,
                f"Time addition for {author_login} ({format_minutes(minutes)}, {work_type}) approved by "
                f"{approved_by} via {self._channel_name} could not be applied ({exc}). No time was logged.",
                log,
            )
            raise

        log.info(
            "work_item_created",
            work_item_id=item.id or None,
            author_login=author_login,
        )
        return item

    def _audit(self, issue_id: str, text: str, log) -> bool:
        try:
            self._tracker.add_comment(issue_id, text)
        except TrackerTransportError as exc:
            log.error("audit_comment_failed", error=str(exc))
            return False
        return True
