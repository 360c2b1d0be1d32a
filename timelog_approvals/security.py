"""Slack request signature verification."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256
from typing import Mapping

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5  # five minutes


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    """Return the ``v0=`` signature Slack would send for *body*."""

    basestring = f"{VERSION}:{timestamp}:{body}".encode("utf-8")
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, sha256).hexdigest()
    return f"{VERSION}={digest}"


def is_valid_slack_request(
    *, signing_secret: str, timestamp: str, body: str, signature: str, tolerance: int = DEFAULT_TOLERANCE
) -> bool:
    """Check the signature and reject timestamps outside *tolerance* (replays)."""

    if not timestamp or not signature:
        return False

    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    if abs(int(time.time()) - request_ts) > tolerance:
        return False

    return hmac.compare_digest(compute_signature(signing_secret, timestamp, body), signature)


def verify_headers(*, signing_secret: str, headers: Mapping[str, str], body: str) -> bool:
    """Convenience wrapper reading the Slack headers from a request mapping."""

    return is_valid_slack_request(
        signing_secret=signing_secret,
        timestamp=headers.get(SLACK_TIMESTAMP_HEADER, ""),
        body=body,
        signature=headers.get(SLACK_SIGNATURE_HEADER, ""),
    )
