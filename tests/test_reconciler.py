"""Tests for the work item reconciler used by correction requests."""

from pathlib import Path
import sys

import structlog
from structlog.testing import capture_logs

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timelog_approvals.errors import TrackerTransportError  # noqa: E402
from timelog_approvals.reconciler import (  # noqa: E402
    ReconciliationStatus,
    WorkItemReconciler,
    find_matching_work_item,
)
from timelog_approvals.tracker import WorkItem  # noqa: E402


class FakeTracker:
    def __init__(self, items=None, *, fail_fetch=False, fail_delete=False, fail_comment=False):
        self.items = list(items or [])
        self.fail_fetch = fail_fetch
        self.fail_delete = fail_delete
        self.fail_comment = fail_comment
        self.deleted = []
        self.comments = []

    def fetch_work_items(self, issue_id):
        if self.fail_fetch:
            raise TrackerTransportError("YouTrack could not be reached (ConnectError).", operation="fetch_work_items")
        return list(self.items)

    def delete_work_item(self, issue_id, work_item_id):
        if self.fail_delete:
            raise TrackerTransportError("YouTrack rejected delete_work_item (403): forbidden", status_code=403)
        self.deleted.append((issue_id, work_item_id))

    def add_comment(self, issue_id, text):
        if self.fail_comment:
            raise TrackerTransportError("YouTrack rejected add_comment (500): boom", status_code=500)
        self.comments.append((issue_id, text))


def _item(item_id, login="jane.doe", minutes=90, type_name="Testing"):
    return WorkItem(id=item_id, author_login=login, minutes=minutes, type_name=type_name)


def _reconcile(tracker, **overrides):
    params = {
        "issue_id": "PROJ-7",
        "requester_login": "jane.doe",
        "minutes": 90,
        "work_type": "Testing",
        "approved_by": "joao.silva",
    }
    params.update(overrides)
    return WorkItemReconciler(tracker).reconcile(**params)


def test_find_matching_work_item_requires_all_fields():
    items = [
        _item("1", login="joao.silva"),
        _item("2", minutes=60),
        _item("3", type_name="Fix"),
        _item("4"),
    ]

    match = find_matching_work_item(items, author_login="jane.doe", minutes=90, work_type="Testing")

    assert match.id == "4"
    assert find_matching_work_item(items[:3], author_login="jane.doe", minutes=90, work_type="Testing") is None


def test_single_match_is_deleted_and_audited():
    tracker = FakeTracker([_item("8-1", minutes=45), _item("8-2")])

    result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.DELETED
    assert result.succeeded is True
    assert result.deleted_item.id == "8-2"
    assert result.audit_recorded is True
    assert tracker.deleted == [("PROJ-7", "8-2")]
    assert len(tracker.comments) == 1
    comment = tracker.comments[0][1]
    assert "8-2" in comment
    assert "joao.silva" in comment
    assert "Slack approval channel" in comment


def test_no_match_deletes_nothing_and_requests_review():
    tracker = FakeTracker([_item("8-1", minutes=45)])

    with capture_logs() as logs:
        result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.MISS
    assert result.succeeded is False
    assert tracker.deleted == []
    assert len(tracker.comments) == 1
    assert "manually" in tracker.comments[0][1]
    assert any(entry["event"] == "reconciliation_miss" for entry in logs)


def test_identical_matches_delete_only_the_first():
    tracker = FakeTracker([_item("8-5"), _item("8-3")])

    result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.DELETED
    assert tracker.deleted == [("PROJ-7", "8-5")]


def test_fetch_failure_is_audited_and_reported():
    tracker = FakeTracker(fail_fetch=True)

    result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.FAILED
    assert isinstance(result.error, TrackerTransportError)
    assert tracker.deleted == []
    assert len(tracker.comments) == 1
    assert "No time was removed" in tracker.comments[0][1]


def test_delete_failure_is_audited_and_reported():
    tracker = FakeTracker([_item("8-1")], fail_delete=True)

    result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.FAILED
    assert result.error.status_code == 403
    assert "8-1" in tracker.comments[0][1]


def test_audit_failure_keeps_the_outcome():
    tracker = FakeTracker([_item("8-1")], fail_comment=True)

    with capture_logs(processors=[structlog.contextvars.merge_contextvars]) as logs:
        result = _reconcile(tracker)

    assert result.status is ReconciliationStatus.DELETED
    assert result.audit_recorded is False
    assert tracker.deleted == [("PROJ-7", "8-1")]
    assert any(entry["event"] == "audit_comment_failed" for entry in logs)
