"""Translate Airtable payloads into remote store records."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from syncledger.domain.codec import parse_datetime, to_jsonable
from syncledger.domain.model import plain_value
from syncledger.domain.ports import FieldDefinition, RemoteRecord, TableDefinition

if TYPE_CHECKING:
    from collections.abc import Mapping

    from syncledger.domain.codec import JsonValue

    from .schema import RecordPayload, TablePayload

log = getLogger(__name__)


def to_table_definition(payload: TablePayload) -> TableDefinition:
    return TableDefinition(
        ref=payload.id,
        name=payload.name,
        fields=tuple(
            FieldDefinition(id=field.id, name=field.name, type=field.type)
            for field in payload.fields
        ),
        primary_field=payload.primary_field_id,
    )


def to_remote_record(payload: RecordPayload, *, modified_field: str | None = None) -> RemoteRecord:
    """Build a remote record; ``modified_field`` names a last-modified-time column if any."""

    modified_at = None
    if modified_field is not None:
        raw = payload.fields.get(modified_field)
        if isinstance(raw, str):
            try:
                modified_at = parse_datetime(raw)
            except ValueError:
                log.warning(f"Unparseable {modified_field!r} on Airtable record {payload.id}")
    fields = {name: value for name, value in payload.fields.items() if name != modified_field}
    return RemoteRecord(id=payload.id, fields=fields, modified_at=modified_at)


def to_fields_payload(fields: Mapping[str, object]) -> dict[str, JsonValue]:
    """Encode field values for a write; superposed cells collapse to their dominant value."""

    return {name: to_jsonable(plain_value(value)) for name, value in fields.items()}
