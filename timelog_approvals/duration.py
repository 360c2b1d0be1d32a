"""Parsing of free-text durations such as ``1h30m`` into minutes."""

from __future__ import annotations

import re

from .errors import RequestValidationError

_DURATION_PATTERN = re.compile(
    r"^(?:(?P<hours>\d+)\s*h)?\s*(?:(?P<minutes>\d+)\s*m)?$", re.IGNORECASE | re.ASCII
)


def parse_duration(text: str | None) -> int:
    """Return the number of minutes described by *text*.

    Accepts ``3h``, ``45m``, ``1h30m`` (whitespace between groups allowed) or a
    bare integer meaning minutes. The result is never negative; direction is
    decided by the request's action kind.
    """

    cleaned = (text or "").strip()
    if not cleaned:
        raise RequestValidationError("Duration is required.")

    if cleaned.isascii() and cleaned.isdigit():
        return int(cleaned)

    match = _DURATION_PATTERN.match(cleaned)
    if match is None or (match.group("hours") is None and match.group("minutes") is None):
        raise RequestValidationError(
            f"Invalid duration '{cleaned}'. Use a format like 1h30m, 2h, 45m or 90."
        )

    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes") or 0)
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Render *minutes* as ``1h 30m`` style text for messages and audit notes."""

    hours, remainder = divmod(max(minutes, 0), 60)
    if hours and remainder:
        return f"{hours}h {remainder}m"
    if hours:
        return f"{hours}h"
    return f"{remainder}m"
