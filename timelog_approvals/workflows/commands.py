"""Parsing of the ``/timelog`` slash command."""

from __future__ import annotations

from dataclasses import dataclass

from .models import ActionKind

USAGE = "Usage: `/timelog add` to log extra time, `/timelog correct` to remove time logged by mistake."

_ALIASES = {
    "add": ActionKind.ADD,
    "correct": ActionKind.CORRECT,
    "subtract": ActionKind.CORRECT,
    "remove": ActionKind.CORRECT,
}


@dataclass
class SlashContext:
    action_kind: ActionKind


def parse_slash_command(text: str) -> SlashContext:
    keyword = (text or "").strip().lower()
    if not keyword:
        raise ValueError(USAGE)
    action_kind = _ALIASES.get(keyword.split()[0])
    if action_kind is None:
        raise ValueError(f"Unknown action `{keyword}`. {USAGE}")
    return SlashContext(action_kind=action_kind)
