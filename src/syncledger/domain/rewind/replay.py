"""Fold change records into entity state."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, cast

from syncledger.domain.model import ChangeAction, Side, Snapshot, SyncChange

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from syncledger.domain.model import ChangeRecord

log = getLogger(__name__)


@dataclass(slots=True)
class ReplayState:
    exists: bool = False
    values: dict[str, object] = field(default_factory=dict[str, object])
    record: ChangeRecord | None = None
    table_ref: str | None = None


def describes_local_state(record: ChangeRecord) -> bool:
    """Sync records aimed at the remote side say nothing new about the local entity."""

    return not (isinstance(record, SyncChange) and record.resolution.target == Side.REMOTE)


def ordered(records: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    """Sort by creation time and drop duplicate deliveries of the same record."""

    unique: dict[str, ChangeRecord] = {}
    for record in records:
        unique.setdefault(record.id, record)
    return sorted(unique.values(), key=lambda record: (record.created_at, record.id))


def apply_record(state: ReplayState, record: ChangeRecord) -> None:
    if not describes_local_state(record):
        return
    state.record = record
    state.table_ref = record.table_ref or state.table_ref

    if record.field is not None:
        if record.action is ChangeAction.DELETE or record.after is None:
            state.values.pop(record.field, None)
        else:
            state.values[record.field] = record.after
            state.exists = True
        return

    if record.action is ChangeAction.DELETE or record.after is None:
        state.exists = False
        state.values = {}
    elif isinstance(record.after, Mapping):
        state.exists = True
        state.values = dict(cast(Mapping[str, object], record.after))
    else:
        log.warning(f"Ignoring non-mapping entity state in record {record.id}")


def fold(records: Iterable[ChangeRecord]) -> ReplayState:
    state = ReplayState()
    for record in ordered(records):
        apply_record(state, record)
    return state


def snapshot_at(
    entity_id: str,
    timestamp: datetime,
    records: Iterable[ChangeRecord],
) -> Snapshot | None:
    """Reconstruct ``entity_id`` from the records created at or before ``timestamp``."""

    state = fold(record for record in records if record.created_at <= timestamp)
    if state.record is None:
        return None
    return Snapshot(
        entity_id=entity_id,
        timestamp=timestamp,
        values=dict(state.values),
        record=state.record,
        exists=state.exists,
        table_ref=state.table_ref,
    )
