"""Synchronous YouTrack REST client covering the time tracking calls we need."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any, List
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, ValidationError, model_validator

from .errors import TrackerTransportError

WORK_ITEM_FIELDS = "id,date,text,author(login),duration(minutes),type(id,name)"


class WorkItem(BaseModel):
    """Projection of a YouTrack work item used for matching."""

    id: str
    author_login: str | None = None
    minutes: int = 0
    type_name: str | None = None
    date: int | None = None
    text: str | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten_api_payload(cls, value):
        """Accept the nested shape returned by ``/timeTracking/workItems``."""

        if not isinstance(value, dict) or "author_login" in value:
            return value
        author = value.get("author") or {}
        duration = value.get("duration") or {}
        work_type = value.get("type") or {}
        return {
            "id": value.get("id"),
            "author_login": author.get("login"),
            "minutes": duration.get("minutes") or 0,
            "type_name": work_type.get("name"),
            "date": value.get("date"),
            "text": value.get("text"),
        }


def _epoch_millis(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=UTC).timestamp() * 1000)


class YouTrackClient:
    """Wrap the YouTrack endpoints used by the approval workflow.

    Every failure, network or HTTP, surfaces as :class:`TrackerTransportError`.
    Nothing is retried.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        work_item_limit: int = 500,
        client: httpx.Client | None = None,
    ) -> None:
        if not token:
            raise ValueError("A YouTrack permanent token is required.")

        self._base_url = base_url.rstrip("/")
        self._work_item_limit = work_item_limit
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=False)
        self._log = structlog.get_logger().bind(component="youtrack")

    def close(self) -> None:
        self._client.close()

    def _issue_path(self, issue_id: str, suffix: str = "") -> str:
        return f"{self._base_url}/api/issues/{quote(issue_id, safe='')}{suffix}"

    def _request(self, method: str, url: str, *, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            self._log.error("youtrack_unreachable", operation=operation, error=str(exc))
            raise TrackerTransportError(
                f"YouTrack could not be reached ({exc.__class__.__name__}).",
                operation=operation,
            ) from exc

        if response.is_error:
            detail = _error_detail(response)
            self._log.error(
                "youtrack_call_failed",
                operation=operation,
                status_code=response.status_code,
                error=detail,
            )
            raise TrackerTransportError(
                f"YouTrack rejected {operation} ({response.status_code}): {detail}",
                status_code=response.status_code,
                operation=operation,
            )
        return response

    def fetch_work_items(self, issue_id: str) -> List[WorkItem]:
        """Return the logged work items of *issue_id* in the order YouTrack lists them."""

        response = self._request(
            "GET",
            self._issue_path(issue_id, "/timeTracking/workItems"),
            operation="fetch_work_items",
            params={"fields": WORK_ITEM_FIELDS, "$top": self._work_item_limit},
        )
        try:
            payload = response.json()
            return [WorkItem.model_validate(item) for item in payload]
        except (ValueError, TypeError, ValidationError) as exc:
            raise TrackerTransportError(
                "YouTrack returned an unexpected work item payload.",
                status_code=response.status_code,
                operation="fetch_work_items",
            ) from exc

    def delete_work_item(self, issue_id: str, work_item_id: str) -> None:
        self._request(
            "DELETE",
            self._issue_path(issue_id, f"/timeTracking/workItems/{quote(work_item_id, safe='')}"),
            operation="delete_work_item",
        )

    def create_work_item(
        self,
        issue_id: str,
        *,
        minutes: int,
        text: str,
        author_login: str,
        type_id: str,
        day: date | None = None,
    ) -> WorkItem:
        """Log a new work item dated *day* (today, UTC, by default)."""

        body = {
            "date": _epoch_millis(day or datetime.now(UTC).date()),
            "duration": {"minutes": minutes},
            "text": text,
            "author": {"login": author_login},
            "type": {"id": type_id},
        }
        response = self._request(
            "POST",
            self._issue_path(issue_id, "/timeTracking/workItems"),
            operation="create_work_item",
            params={"fields": WORK_ITEM_FIELDS},
            json=body,
        )
        try:
            return WorkItem.model_validate(response.json())
        except (ValueError, ValidationError):
            # The item exists even if the echo is unusable.
            return WorkItem(id="", author_login=author_login, minutes=minutes, date=body["date"], text=text)

    def add_comment(self, issue_id: str, text: str) -> None:
        self._request(
            "POST",
            self._issue_path(issue_id, "/comments"),
            operation="add_comment",
            params={"fields": "id"},
            json={"text": text},
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("error_description") or payload.get("error") or payload)[:200]
    return str(payload)[:200]
