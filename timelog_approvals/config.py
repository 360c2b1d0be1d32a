"""Pydantic-based configuration helpers for the time-log approval bot."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to initialise the Slack bot and the YouTrack client."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    approver_user_ids: List[str] = Field(..., alias="APPROVER_USER_IDS")
    approval_channel_id: str = Field(..., alias="APPROVAL_CHANNEL_ID")
    database_url: str = Field(..., alias="DATABASE_URL")
    youtrack_url: str = Field(..., alias="YOUTRACK_URL")
    youtrack_token: str = Field(..., alias="YOUTRACK_TOKEN")
    user_map_path: str = Field("config/user_map.json", alias="USER_MAP_PATH")
    work_types_path: str = Field("config/work_types.json", alias="WORK_TYPES_PATH")
    work_item_limit: int = Field(500, alias="YOUTRACK_WORK_ITEM_LIMIT")
    youtrack_timeout: float = Field(10.0, alias="YOUTRACK_TIMEOUT_SECONDS")

    @field_validator("approver_user_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return [item.strip() for item in value if item.strip()]
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("youtrack_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("YOUTRACK_URL must start with http:// or https://")
        return cleaned

    @field_validator("work_item_limit", "youtrack_timeout")
    @classmethod
    def _ensure_positive(cls, value):
        if value <= 0:
            raise ValueError("YouTrack limits must be greater than zero")
        return value


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        message = (
            "Missing required environment variables: "
            f"{_format_missing(missing)}"
        )
        raise RuntimeError(message) from exc
