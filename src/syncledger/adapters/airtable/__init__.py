"""Public interface for the Airtable adapter."""

from __future__ import annotations

from .client import AirtableRemoteStore
from .schema import RecordPayload, RecordsPage, TablePayload, TablesResponse
from .translator import to_fields_payload, to_remote_record, to_table_definition

__all__ = [
    "AirtableRemoteStore",
    "RecordPayload",
    "RecordsPage",
    "TablePayload",
    "TablesResponse",
    "to_fields_payload",
    "to_remote_record",
    "to_table_definition",
]
