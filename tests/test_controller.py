"""End-to-end tests for submitting, approving and rejecting time adjustments."""

import logging
from pathlib import Path
import sys

import pytest
from slack_sdk.errors import SlackApiError
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timelog_approvals import config  # noqa: E402
from timelog_approvals.actions import (  # noqa: E402
    APPROVE_ACTION_ID,
    REJECT_ACTION_ID,
    SubmitCommand,
    parse_action_command,
)
from timelog_approvals.db import Base, get_engine, get_session_factory  # noqa: E402
from timelog_approvals.errors import TrackerTransportError  # noqa: E402
from timelog_approvals.lookups import IdentityMap, WorkTypeTable  # noqa: E402
from timelog_approvals.models import DecisionClaim  # noqa: E402
from timelog_approvals.tracker import WorkItem  # noqa: E402
from timelog_approvals.workflows import controller as controller_module  # noqa: E402
from timelog_approvals.workflows.controller import (  # noqa: E402
    ALREADY_HANDLED_TEXT,
    CLAIM_FAILED_TEXT,
    Actuation,
    ApprovalController,
    WorkflowServices,
)
from timelog_approvals.workflows.models import ActionKind, TimeAdjustmentRequest  # noqa: E402
from timelog_approvals.workflows.state import FailureKind, WorkflowState  # noqa: E402

REQUESTER = "U0123ABCD"
APPROVER = "U0456EFGH"
APPROVAL_CHANNEL = "CAPPROVAL"
MESSAGE_TS = "1700000000.000100"


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    db_path = tmp_path / "claims.db"
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("APPROVER_USER_IDS", APPROVER)
    monkeypatch.setenv("APPROVAL_CHANNEL_ID", APPROVAL_CHANNEL)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("YOUTRACK_URL", "https://yt.example.com")
    monkeypatch.setenv("YOUTRACK_TOKEN", "perm:abc")

    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()

    engine = get_engine()
    Base.metadata.create_all(engine)

    yield

    Base.metadata.drop_all(engine)
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


class FakeTracker:
    def __init__(self, items=None, *, create_error=None, fetch_error=None):
        self.items = list(items or [])
        self.create_error = create_error
        self.fetch_error = fetch_error
        self.calls = []

    def fetch_work_items(self, issue_id):
        self.calls.append(("fetch", issue_id))
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.items)

    def delete_work_item(self, issue_id, work_item_id):
        self.calls.append(("delete", issue_id, work_item_id))

    def create_work_item(self, issue_id, *, minutes, text, author_login, type_id):
        self.calls.append(("create", issue_id, minutes, author_login, type_id, text))
        if self.create_error is not None:
            raise self.create_error
        return WorkItem(id="8-100", author_login=author_login, minutes=minutes)

    def add_comment(self, issue_id, text):
        self.calls.append(("comment", issue_id, text))


class DummySlackClient:
    def __init__(self, *, fail_dm=False):
        self.post_calls = []
        self.update_calls = []
        self.ephemeral_calls = []
        self.dm_texts = []
        self.fail_dm = fail_dm

    def chat_postMessage(self, **kwargs):
        if kwargs["channel"].startswith("D"):
            self.dm_texts.append(kwargs["text"])
        else:
            self.post_calls.append(kwargs)
        return {"ok": True, "channel": kwargs["channel"], "ts": MESSAGE_TS}

    def chat_update(self, **kwargs):
        self.update_calls.append(kwargs)
        return {"ok": True}

    def chat_postEphemeral(self, **kwargs):
        self.ephemeral_calls.append(kwargs)
        return {"ok": True}

    def conversations_open(self, **kwargs):
        if self.fail_dm:
            raise RuntimeError("DM channel unavailable")
        return {"ok": True, "channel": {"id": f"D{kwargs['users']}"}}


def _services(tracker):
    return WorkflowServices(
        tracker=tracker,
        identities=IdentityMap({REQUESTER: "jane.doe", APPROVER: "joao.silva"}),
        work_types=WorkTypeTable({"Development": "111-0", "Testing": "111-3", "Fix": "111-2"}),
        approval_channel_id=APPROVAL_CHANNEL,
    )


def _controller(tracker, client=None):
    client = client or DummySlackClient()
    return ApprovalController(client=client, services=_services(tracker), logger=logging.getLogger(__name__)), client


def _submit(controller, client, *, action_kind, duration, work_type, issue, requester=REQUESTER):
    request = TimeAdjustmentRequest(
        issue_id=issue,
        duration_text=duration,
        requester_id=requester,
        work_type=work_type,
        reason="Adjusting my timesheet",
        action_kind=action_kind,
    )
    token = controller.submit(SubmitCommand(request=request))
    posted = client.post_calls[-1]
    buttons = next(block for block in posted["blocks"] if block["type"] == "actions")["elements"]
    assert buttons[0]["value"] == token
    return token, posted["blocks"]


def _actuation(blocks, approver=APPROVER):
    return Actuation(approver_id=approver, channel_id=APPROVAL_CHANNEL, message_ts=MESSAGE_TS, original_blocks=blocks)


def _final_update(client):
    final = client.update_calls[-1]
    assert final["channel"] == APPROVAL_CHANNEL
    assert final["ts"] == MESSAGE_TS
    assert all(block["type"] != "actions" for block in final["blocks"])
    return final


def test_submit_posts_message_and_notifies_requester():
    tracker = FakeTracker()
    controller, client = _controller(tracker)

    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="3h", work_type="Development", issue="proj-1")

    assert token == "PROJ-1|3h|U0123ABCD|Development|add"
    assert client.post_calls[0]["channel"] == APPROVAL_CHANNEL
    assert "sent for approval" in client.dm_texts[0]
    assert tracker.calls == []


def test_add_request_approved_logs_time():
    tracker = FakeTracker()
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="3h", work_type="Development", issue="PROJ-1")

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.APPROVED
    assert len(tracker.calls) == 1
    _, issue_id, minutes, author_login, type_id, text = tracker.calls[0]
    assert (issue_id, minutes, author_login, type_id) == ("PROJ-1", 180, "jane.doe", "111-0")
    assert "joao.silva" in text
    assert "approved and applied" in client.dm_texts[-1]
    # first update removes the controls, the second is terminal
    assert len(client.update_calls) == 2
    assert all(block["type"] != "actions" for block in client.update_calls[0]["blocks"])
    assert "Approved by <@U0456EFGH>" in str(_final_update(client)["blocks"][-1])


def test_correct_request_rejected_makes_no_tracker_call():
    tracker = FakeTracker([WorkItem(id="8-1", author_login="jane.doe", minutes=90, type_name="Testing")])
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.CORRECT, duration="1h30m", work_type="Testing", issue="PROJ-2")

    outcome = controller.dispatch(parse_action_command(REJECT_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.REJECTED
    assert tracker.calls == []
    assert "was rejected" in client.dm_texts[-1]
    assert len(client.update_calls) == 1
    assert "Rejected by <@U0456EFGH>" in str(_final_update(client)["blocks"][-1])


def test_correct_request_without_match_fails_with_miss():
    tracker = FakeTracker([WorkItem(id="8-1", author_login="jane.doe", minutes=30, type_name="Fix")])
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.CORRECT, duration="45m", work_type="Fix", issue="PROJ-3")

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.FAILED
    assert outcome.failure is FailureKind.MISS
    assert [call[0] for call in tracker.calls] == ["fetch", "comment"]
    assert "verify the logged time manually" in client.dm_texts[-1]
    assert "No matching work item found" in str(_final_update(client)["blocks"][-1])


def test_correct_request_with_match_deletes_item():
    tracker = FakeTracker(
        [
            WorkItem(id="8-1", author_login="joao.silva", minutes=45, type_name="Fix"),
            WorkItem(id="8-2", author_login="jane.doe", minutes=45, type_name="Fix"),
        ]
    )
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.CORRECT, duration="45m", work_type="Fix", issue="PROJ-3")

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.APPROVED
    assert ("delete", "PROJ-3", "8-2") in tracker.calls
    assert tracker.calls[-1][0] == "comment"


def test_double_actuation_mutates_once():
    tracker = FakeTracker()
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="3h", work_type="Development", issue="PROJ-1")

    first = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))
    updates_after_first = len(client.update_calls)
    second = controller.dispatch(parse_action_command(REJECT_ACTION_ID, token), _actuation(blocks, approver="U0789IJKL"))

    assert first.state is WorkflowState.APPROVED
    assert second is None
    assert len([call for call in tracker.calls if call[0] == "create"]) == 1
    assert len(client.update_calls) == updates_after_first
    assert client.ephemeral_calls == [
        {"channel": APPROVAL_CHANNEL, "user": "U0789IJKL", "text": ALREADY_HANDLED_TEXT}
    ]

    with get_session_factory()() as session:
        claims = session.query(DecisionClaim).all()
        assert len(claims) == 1
        assert claims[0].decision == "APPROVED"
        assert claims[0].outcome == "APPROVED"


def test_claim_storage_failure_leaves_message_untouched(monkeypatch):
    tracker = FakeTracker()
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="3h", work_type="Development", issue="PROJ-1")
    first = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))
    updates_after_first = list(client.update_calls)
    dms_after_first = list(client.dm_texts)

    def locked_claim(**kwargs):
        raise OperationalError("INSERT INTO decision_claims", {}, Exception("database is locked"))

    monkeypatch.setattr(controller_module, "claim_decision", locked_claim)

    with capture_logs() as logs:
        second = controller.dispatch(
            parse_action_command(REJECT_ACTION_ID, token), _actuation(blocks, approver="U0789IJKL")
        )

    assert first.state is WorkflowState.APPROVED
    assert second is None
    assert client.update_calls == updates_after_first
    assert client.dm_texts == dms_after_first
    assert client.ephemeral_calls == [
        {"channel": APPROVAL_CHANNEL, "user": "U0789IJKL", "text": CLAIM_FAILED_TEXT}
    ]
    assert any(entry["event"] == "decision_claim_failed" for entry in logs)
    assert not any(entry["event"] == "actuation_failed" for entry in logs)

    with get_session_factory()() as session:
        assert session.query(DecisionClaim).one().outcome == "APPROVED"


def test_unmapped_requester_fails_without_tracker_call():
    tracker = FakeTracker()
    controller, client = _controller(tracker)
    token, blocks = _submit(
        controller, client, action_kind=ActionKind.ADD, duration="2h", work_type="Development", issue="PROJ-4", requester="U0999ZZZZ"
    )

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.FAILED
    assert outcome.failure is FailureKind.VALIDATION
    assert "<@U0999ZZZZ>" in outcome.detail
    assert tracker.calls == []


def test_transport_failure_is_reported():
    tracker = FakeTracker(create_error=TrackerTransportError("YouTrack rejected create_work_item (403): forbidden"))
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="30m", work_type="Testing", issue="PROJ-5")

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.failure is FailureKind.TRANSPORT
    assert "forbidden" in client.dm_texts[-1]
    assert "YouTrack call failed" in str(_final_update(client)["blocks"][-1])
    assert [call[0] for call in tracker.calls] == ["create", "comment"]
    _, issue_id, comment = tracker.calls[-1]
    assert issue_id == "PROJ-5"
    assert "joao.silva" in comment
    assert "forbidden" in comment
    assert "No time was logged" in comment


def test_unexpected_error_still_finalizes_message():
    tracker = FakeTracker(create_error=RuntimeError("boom"))
    controller, client = _controller(tracker)
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="30m", work_type="Testing", issue="PROJ-5")

    with capture_logs() as logs:
        outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.failure is FailureKind.ERROR
    assert any(entry["event"] == "actuation_failed" for entry in logs)
    assert "Unexpected error" in str(_final_update(client)["blocks"][-1])

    with get_session_factory()() as session:
        assert session.query(DecisionClaim).one().outcome == "FAILED"


def test_notification_failure_does_not_change_outcome():
    tracker = FakeTracker()
    controller, client = _controller(tracker, DummySlackClient(fail_dm=True))
    token, blocks = _submit(controller, client, action_kind=ActionKind.ADD, duration="1h", work_type="Development", issue="PROJ-6")

    outcome = controller.dispatch(parse_action_command(APPROVE_ACTION_ID, token), _actuation(blocks))

    assert outcome.state is WorkflowState.APPROVED
    assert client.dm_texts == []
    assert "Approved by" in str(_final_update(client)["blocks"][-1])


def test_publish_failure_returns_none():
    class FailingClient(DummySlackClient):
        def chat_postMessage(self, **kwargs):
            if kwargs["channel"] == APPROVAL_CHANNEL:
                raise SlackApiError("channel_not_found", {"error": "channel_not_found"})
            return super().chat_postMessage(**kwargs)

    client = FailingClient()
    controller, _ = _controller(FakeTracker(), client)
    request = TimeAdjustmentRequest(
        issue_id="PROJ-1",
        duration_text="1h",
        requester_id=REQUESTER,
        work_type="Development",
        reason="late",
        action_kind=ActionKind.ADD,
    )

    assert controller.submit(SubmitCommand(request=request)) is None
    assert "could not be posted" in client.dm_texts[0]


def test_submit_refuses_request_too_large_for_button():
    controller, client = _controller(FakeTracker())
    request = TimeAdjustmentRequest(
        issue_id="PROJ-1",
        duration_text="1h",
        requester_id=REQUESTER,
        work_type="Development " * 200,
        reason="late",
        action_kind=ActionKind.ADD,
    )

    with capture_logs() as logs:
        token = controller.submit(SubmitCommand(request=request))

    assert token is None
    assert client.post_calls == []
    assert "could not be sent for approval" in client.dm_texts[0]
    assert any(entry["event"] == "token_encode_failed" for entry in logs)


def test_dispatch_requires_actuation_for_decisions():
    controller, _ = _controller(FakeTracker())

    with pytest.raises(ValueError):
        controller.dispatch(parse_action_command(APPROVE_ACTION_ID, "PROJ-1|1h|U1|Development|add"))
