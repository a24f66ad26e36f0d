"""Public interface for the Xano activity log adapter."""

from __future__ import annotations

from .client import XanoActivityLog
from .schema import ActivityPayload, HistoryResponse, SnapshotResponse
from .translator import from_activity_payload, to_activity_payload

__all__ = [
    "ActivityPayload",
    "HistoryResponse",
    "SnapshotResponse",
    "XanoActivityLog",
    "from_activity_payload",
    "to_activity_payload",
]
