"""Exceptions shared by the approval workflow and the tracker client."""

from __future__ import annotations


class RequestValidationError(ValueError):
    """Raised when a request cannot be applied as submitted.

    Covers malformed durations, unmapped work types and requesters without a
    YouTrack login. No tracker call is made once this is raised.
    """


class TrackerTransportError(Exception):
    """Raised when YouTrack is unreachable or rejects a call."""

    def __init__(self, message: str, *, status_code: int | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
