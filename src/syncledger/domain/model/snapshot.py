"""Reconstructed entity states and timeline summaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from syncledger.domain.checksum import FieldDiff

    from .changes import ChangeRecord
    from .context import Agent
    from .enums import ChangeAction


@dataclass(frozen=True, slots=True, kw_only=True)
class Snapshot:
    """State of one entity at an instant, folded from its change records."""

    entity_id: str
    timestamp: datetime
    values: dict[str, object]
    record: ChangeRecord
    exists: bool = True
    table_ref: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TimelineEntry:
    """Enough of one change record to render what changed, by whom and when."""

    record_id: str
    timestamp: datetime
    action: ChangeAction
    agent: Agent
    field: str | None
    changes: tuple[FieldDiff, ...] = ()
    can_rewind: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class StateComparison:
    entity_id: str
    first_timestamp: datetime
    second_timestamp: datetime
    first: dict[str, object] | None
    second: dict[str, object] | None
    differences: tuple[FieldDiff, ...]
