"""Pydantic models describing the Xano activity endpoints."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, Field, model_validator

from syncledger.domain.model import ChangeAction


class XanoBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ActivityPayload(XanoBaseModel):
    activity_id: str
    timestamp: datetime
    action: ChangeAction
    entity_type: str
    entity_id: str
    field_name: str | None = None
    table_id: str | None = None
    user_id: str | None = None
    user_name: str | None = None
    user_email: str | None = None
    user_kind: str | None = None
    before: Any = None
    after: Any = None
    checksum_before: str
    checksum_after: str
    sync_session_id: str | None = None
    sync_direction: str | None = None
    conflict_resolution: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict[str, Any])
    source_system: str = "syncledger"


class HistoryResponse(XanoBaseModel):
    items: list[ActivityPayload]
    total: int | None = None
    offset: int = 0
    limit: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_list(cls, value: object) -> object:
        # Endpoints without paging metadata return the rows directly.
        if isinstance(value, list):
            return {"items": value}
        if isinstance(value, Mapping):
            return cast(Mapping[str, object], value)
        return value


class SnapshotResponse(XanoBaseModel):
    activity: ActivityPayload | None = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_row(cls, value: object) -> object:
        if value is None:
            return {"activity": None}
        if isinstance(value, Mapping):
            mapping = cast(Mapping[str, object], value)
            if "activity_id" in mapping:
                return {"activity": mapping}
            return mapping
        return value


class ErrorResponse(XanoBaseModel):
    message: str = "unknown error"
    code: str | None = None
