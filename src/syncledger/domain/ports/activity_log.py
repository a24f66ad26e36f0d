"""Port for the append-only activity log."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from syncledger.domain.errors import PermanentIOError, TransientIOError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from syncledger.domain.model import ChangeAction, ChangeRecord


@dataclass(frozen=True, slots=True, kw_only=True)
class ActivityQuery:
    entity_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    action: ChangeAction | None = None
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError("Query limit must be non-negative")
        if self.offset < 0:
            raise ValueError("Query offset must be non-negative")
        if self.start_time and self.end_time and self.start_time > self.end_time:
            raise ValueError("Query start must be before end")


class ActivityLogUnavailableError(TransientIOError):
    def __init__(self, message: str = "Activity log temporarily unavailable") -> None:
        super().__init__(message, reason="activity_log_unavailable")


class ActivityLogRejectedError(PermanentIOError):
    def __init__(self, message: str, *, reason: str = "activity_log_rejected") -> None:
        super().__init__(message, reason=reason)


@runtime_checkable
class ActivityLog(Protocol):
    """Append-only store of change records.

    ``query`` returns records oldest first (creation order). Appends are
    at-least-once: readers must tolerate duplicates sharing one record id.
    """

    async def append(self, record: ChangeRecord) -> None: ...

    async def query(self, query: ActivityQuery) -> Sequence[ChangeRecord]: ...

    async def get_snapshot(self, entity_id: str, timestamp: datetime) -> ChangeRecord | None:
        """Return the last record for ``entity_id`` at or before ``timestamp``."""
        ...
