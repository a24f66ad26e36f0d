"""Pydantic models describing the Airtable Web API payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AirtableBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FieldPayload(AirtableBaseModel):
    id: str
    name: str
    type: str | None = None


class TablePayload(AirtableBaseModel):
    id: str
    name: str
    primary_field_id: str | None = Field(default=None, alias="primaryFieldId")
    fields: list[FieldPayload] = Field(default_factory=list[FieldPayload])


class TablesResponse(AirtableBaseModel):
    tables: list[TablePayload]


class RecordPayload(AirtableBaseModel):
    id: str
    created_time: datetime | None = Field(default=None, alias="createdTime")
    fields: dict[str, object] = Field(default_factory=dict[str, object])


class RecordsPage(AirtableBaseModel):
    records: list[RecordPayload]
    offset: str | None = None


class ErrorDetail(AirtableBaseModel):
    type: str | None = None
    message: str | None = None


class ErrorResponse(AirtableBaseModel):
    error: ErrorDetail

    @field_validator("error", mode="before")
    @classmethod
    def _normalize_error(cls, value: object) -> object:
        # Some endpoints return the error type as a bare string.
        if isinstance(value, str):
            return {"type": value}
        if isinstance(value, Mapping):
            return cast(Mapping[str, object], value)
        return value

    @property
    def message(self) -> str:
        return self.error.message or self.error.type or "unknown error"
