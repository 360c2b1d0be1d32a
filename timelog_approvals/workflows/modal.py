"""Intake modal for time adjustment requests."""

from __future__ import annotations

import json
from typing import Dict, List

from timelog_approvals.lookups import WorkTypeTable

from .models import ActionKind, MAX_DURATION_LENGTH, MAX_ISSUE_ID_LENGTH, MAX_REASON_LENGTH

SUBMIT_CALLBACK_ID = "timelog_submit"

ISSUE_BLOCK_ID = "issue_id"
DURATION_BLOCK_ID = "duration"
WORK_TYPE_BLOCK_ID = "work_type"
REASON_BLOCK_ID = "reason"

MAX_OPTION_TEXT_LENGTH = 75
# Slack caps static_select options.
MAX_OPTIONS = 100


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _text_input(block_id: str, label: str, placeholder: str, *, multiline: bool = False, max_length: int | None = None) -> Dict:
    element: Dict[str, object] = {
        "type": "plain_text_input",
        "action_id": block_id,
        "placeholder": {"type": "plain_text", "text": placeholder},
    }
    if multiline:
        element["multiline"] = True
    if max_length:
        element["max_length"] = max_length
    return {
        "type": "input",
        "block_id": block_id,
        "label": {"type": "plain_text", "text": label, "emoji": True},
        "element": element,
        "optional": False,
    }


def _work_type_select(work_types: WorkTypeTable) -> Dict:
    options: List[Dict] = [
        {
            "text": {"type": "plain_text", "text": _truncate(label, MAX_OPTION_TEXT_LENGTH)},
            "value": label,
        }
        for label in work_types.labels[:MAX_OPTIONS]
    ]
    return {
        "type": "input",
        "block_id": WORK_TYPE_BLOCK_ID,
        "label": {"type": "plain_text", "text": "Work type", "emoji": True},
        "element": {
            "type": "static_select",
            "action_id": WORK_TYPE_BLOCK_ID,
            "placeholder": {"type": "plain_text", "text": "Select a work type"},
            "options": options,
        },
        "optional": False,
    }


def build_intake_modal(action_kind: ActionKind, work_types: WorkTypeTable) -> Dict:
    """Build the modal collecting issue, duration, work type and reason."""

    title = "Add time" if action_kind is ActionKind.ADD else "Correct time"
    duration_hint = "Time worked, e.g. 1h30m" if action_kind is ActionKind.ADD else "Time logged by mistake, e.g. 45m"
    return {
        "type": "modal",
        "callback_id": SUBMIT_CALLBACK_ID,
        "private_metadata": json.dumps({"action_kind": action_kind.value}),
        "title": {"type": "plain_text", "text": title, "emoji": True},
        "submit": {"type": "plain_text", "text": "Request approval", "emoji": True},
        "close": {"type": "plain_text", "text": "Cancel", "emoji": True},
        "blocks": [
            _text_input(ISSUE_BLOCK_ID, "Issue", "PROJ-123", max_length=MAX_ISSUE_ID_LENGTH),
            _text_input(DURATION_BLOCK_ID, "Duration", duration_hint, max_length=MAX_DURATION_LENGTH),
            _work_type_select(work_types),
            _text_input(REASON_BLOCK_ID, "Reason", "Why is this adjustment needed?", multiline=True, max_length=MAX_REASON_LENGTH),
        ],
    }
