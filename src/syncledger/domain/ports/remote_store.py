"""Port for the remote tabular store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from syncledger.domain.errors import PermanentIOError, TransientIOError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    id: str
    name: str
    type: str | None = None


@dataclass(frozen=True, slots=True)
class TableDefinition:
    ref: str
    name: str
    fields: tuple[FieldDefinition, ...] = ()
    primary_field: str | None = None


@dataclass(slots=True)
class RemoteRecord:
    """One remote row; ``id`` is ``None`` for rows not yet created remotely."""

    id: str | None
    fields: dict[str, object] = field(default_factory=dict["str", "object"])
    modified_at: datetime | None = None


class RemoteStoreError(RuntimeError):
    """Marker base for remote store failures."""


class RemoteRateLimitedError(TransientIOError, RemoteStoreError):
    def __init__(self, message: str = "Remote store rate limit exceeded") -> None:
        super().__init__(message, reason="remote_rate_limited")


class RemoteUnavailableError(TransientIOError, RemoteStoreError):
    def __init__(self, message: str = "Remote store temporarily unavailable") -> None:
        super().__init__(message, reason="remote_unavailable")


class RemotePermanentError(PermanentIOError, RemoteStoreError):
    def __init__(self, message: str, *, reason: str = "remote_rejected") -> None:
        super().__init__(message, reason=reason)


@runtime_checkable
class RemoteStore(Protocol):
    """Remote side of a reconciliation."""

    async def fetch_schema(self) -> Sequence[TableDefinition]: ...

    async def fetch_records(self, table_ref: str) -> Sequence[RemoteRecord]: ...

    async def write_record(self, table_ref: str, record: RemoteRecord) -> RemoteRecord:
        """Create (``record.id is None``) or update a row, returning the stored row."""
        ...

    async def delete_record(self, table_ref: str, record_id: str) -> None: ...
