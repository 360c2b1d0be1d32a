"""Read-only lookup tables loaded once at startup."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, RootModel, field_validator

from .errors import RequestValidationError


def _clean_mapping(value: Dict[str, str], *, what: str) -> Dict[str, str]:
    cleaned: Dict[str, str] = {}
    for key, item in value.items():
        key = (key or "").strip()
        item = (item or "").strip()
        if not key or not item:
            raise ValueError(f"{what} entries must be non-empty strings")
        cleaned[key] = item
    return cleaned


class IdentityMap(RootModel[Dict[str, str]]):
    """Slack user id -> YouTrack login."""

    @field_validator("root")
    @classmethod
    def validate_entries(cls, value: Dict[str, str]) -> Dict[str, str]:
        return _clean_mapping(value, what="identity map")

    def resolve(self, slack_user_id: str) -> str:
        login = self.root.get(slack_user_id)
        if not login:
            raise RequestValidationError(
                f"<@{slack_user_id}> has no YouTrack login configured in the user map."
            )
        return login

    def display_name(self, slack_user_id: str) -> str:
        """YouTrack login when known, otherwise a readable Slack reference."""

        return self.root.get(slack_user_id) or f"Slack user {slack_user_id}"

    def __contains__(self, slack_user_id: object) -> bool:
        return slack_user_id in self.root


class WorkTypeTable(RootModel[Dict[str, str]]):
    """Work type label -> YouTrack work item type id, in display order."""

    @field_validator("root")
    @classmethod
    def validate_entries(cls, value: Dict[str, str]) -> Dict[str, str]:
        if not value:
            raise ValueError("at least one work type must be configured")
        return _clean_mapping(value, what="work type")

    @property
    def labels(self) -> List[str]:
        return list(self.root)

    def resolve_id(self, label: str) -> str:
        type_id = self.root.get(label)
        if not type_id:
            raise RequestValidationError(f"Work type '{label}' is not configured.")
        return type_id

    def __contains__(self, label: object) -> bool:
        return label in self.root


class LookupTables(BaseModel):
    identities: IdentityMap
    work_types: WorkTypeTable


def _read_json(path: Path) -> object:
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def load_identity_map(path: str | Path) -> IdentityMap:
    """Load the identity map from a JSON object file."""

    return IdentityMap.model_validate(_read_json(Path(path)))


def load_work_type_table(path: str | Path) -> WorkTypeTable:
    """Load the work type table from a JSON object file."""

    return WorkTypeTable.model_validate(_read_json(Path(path)))


def load_lookup_tables(*, user_map_path: str | Path, work_types_path: str | Path) -> LookupTables:
    return LookupTables(
        identities=load_identity_map(user_map_path),
        work_types=load_work_type_table(work_types_path),
    )
