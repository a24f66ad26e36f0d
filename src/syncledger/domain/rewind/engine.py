"""Replay the activity log to inspect or restore past entity states."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal, cast, overload

from syncledger.domain.bounded import BoundedCache
from syncledger.domain.checksum import FieldDiff, change_type_for, diff_fields, same_value
from syncledger.domain.clock import utcnow
from syncledger.domain.codec import isoformat
from syncledger.domain.errors import RewindBusyError, ValidationError
from syncledger.domain.events import RewindEvent, RewindEvents
from syncledger.domain.model import (
    ChangeAction,
    RewindPhase,
    Snapshot,
    StateComparison,
    TimelineEntry,
)
from syncledger.domain.ports import ActivityQuery

from .replay import describes_local_state, ordered, snapshot_at

if TYPE_CHECKING:
    from datetime import datetime

    from syncledger.domain.clock import Clock
    from syncledger.domain.model import ChangeRecord
    from syncledger.domain.ports import ActivityLog, LocalWorkspace
    from syncledger.domain.tracking import ChangeTracker, FlushOutcome

log = getLogger(__name__)

DEFAULT_PREVIEW_CACHE_CAPACITY = 128
DEFAULT_NAVIGATION_LIMIT = 5


@dataclass(frozen=True, slots=True, kw_only=True)
class RewindPreview:
    """Would-be result of a rewind, computed without touching anything."""

    entity_id: str
    timestamp: datetime
    target: Snapshot
    current: dict[str, object] | None
    changes: tuple[FieldDiff, ...]
    validate: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class RewindResult:
    entity_id: str
    timestamp: datetime
    target: Snapshot
    record: ChangeRecord
    delivery: FlushOutcome


@dataclass(frozen=True, slots=True)
class RewindState:
    is_rewinding: bool
    phases: dict[str, RewindPhase]
    pending_previews: tuple[str, ...]
    cached_snapshots: int


class RewindEngine:
    """Reconstruct entity states from the activity log and optionally restore them.

    Restoring is itself a tracked ``rewind`` change, so it can be undone and is
    pushed by the next sync pass like any other local edit. Only one preview
    computation or apply runs at a time across all entities.
    """

    def __init__(
        self,
        *,
        activity_log: ActivityLog,
        workspace: LocalWorkspace,
        tracker: ChangeTracker,
        clock: Clock = utcnow,
        cache_capacity: int = DEFAULT_PREVIEW_CACHE_CAPACITY,
    ) -> None:
        self.activity_log = activity_log
        self.workspace = workspace
        self.tracker = tracker
        self.clock = clock
        self.events = RewindEvents.create()
        self._cache: BoundedCache[tuple[str, datetime], Snapshot] = BoundedCache(cache_capacity)
        self._phases: dict[str, RewindPhase] = {}
        self._pending: dict[str, RewindPreview] = {}
        self._latch = False
        tracker.events.delivered.subscribe(self._forget_delivered)

    @property
    def is_rewinding(self) -> bool:
        return self._latch

    def phase(self, entity_id: str) -> RewindPhase:
        return self._phases.get(entity_id, RewindPhase.IDLE)

    # Reading ----------------------------------------------------------------------

    async def get_timeline(
        self, entity_id: str, *, limit: int | None = None
    ) -> list[TimelineEntry]:
        """Summaries of every recorded change for ``entity_id``, newest first."""

        records = ordered(await self.activity_log.query(ActivityQuery(entity_id=entity_id)))
        entries = [_timeline_entry(record) for record in reversed(records)]
        return entries[:limit] if limit is not None else entries

    async def preview_at_time(self, entity_id: str, timestamp: datetime) -> Snapshot | None:
        key = (entity_id, timestamp)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        records = await self.activity_log.query(
            ActivityQuery(entity_id=entity_id, end_time=timestamp)
        )
        snapshot = snapshot_at(entity_id, timestamp, records)
        if snapshot is not None:
            self._cache.put(key, snapshot)
        return snapshot

    async def compare_states(
        self, entity_id: str, first: datetime, second: datetime
    ) -> StateComparison:
        first_snapshot = await self.preview_at_time(entity_id, first)
        second_snapshot = await self.preview_at_time(entity_id, second)
        first_values = _values(first_snapshot)
        second_values = _values(second_snapshot)
        return StateComparison(
            entity_id=entity_id,
            first_timestamp=first,
            second_timestamp=second,
            first=first_values,
            second=second_values,
            differences=tuple(diff_fields(first_values, second_values)),
        )

    # Rewinding ----------------------------------------------------------------------

    @overload
    async def rewind_to(
        self,
        entity_id: str,
        timestamp: datetime,
        *,
        validate: bool = ...,
        preview: Literal[False] = ...,
    ) -> RewindResult: ...

    @overload
    async def rewind_to(
        self,
        entity_id: str,
        timestamp: datetime,
        *,
        validate: bool = ...,
        preview: Literal[True],
    ) -> RewindPreview: ...

    async def rewind_to(
        self,
        entity_id: str,
        timestamp: datetime,
        *,
        validate: bool = True,
        preview: bool = False,
    ) -> RewindPreview | RewindResult:
        """Restore ``entity_id`` to its state at ``timestamp``, or only preview it.

        Validation rejects, in this order, a future ``timestamp``, an entity
        with unsaved (dirty) changes and an instant with no recorded state.
        Failures while applying are raised; nothing is rolled back.
        """

        if self._latch:
            raise RewindBusyError(entity_id)
        self._latch = True
        self._phases[entity_id] = RewindPhase.PREVIEW_PENDING
        try:
            self.events.started.publish(RewindEvent(entity_id))
            if validate:
                self._validate(entity_id, timestamp)
            target = await self.preview_at_time(entity_id, timestamp)
            if target is None:
                raise ValidationError(
                    f"No recorded state for {entity_id} at or before {isoformat(timestamp)}",
                    reason="no_snapshot",
                )
            if preview:
                result = self._stage_preview(entity_id, timestamp, target, validate=validate)
            else:
                self._phases[entity_id] = RewindPhase.APPLYING
                result = await self._apply(entity_id, timestamp, target)
        except Exception as exc:
            self._pending.pop(entity_id, None)
            self._phases.pop(entity_id, None)
            log.warning(f"Rewind of {entity_id} failed: {exc}")
            self.events.completed.publish(RewindEvent(entity_id, error=exc))
            raise
        finally:
            self._latch = False
        if isinstance(result, RewindResult):
            self.events.completed.publish(RewindEvent(entity_id, target=result.target))
        return result

    async def fast_forward_to(
        self, entity_id: str, timestamp: datetime, *, validate: bool = True
    ) -> RewindResult:
        """Restore a later state; the same path as :meth:`rewind_to`."""

        log.info(f"Fast-forwarding {entity_id} to {isoformat(timestamp)}")
        return await self.rewind_to(entity_id, timestamp, validate=validate)

    async def step_backward(self, entity_id: str) -> RewindResult | None:
        """Restore the state before the latest change, or return ``None`` if there is none."""

        timeline = [
            entry for entry in await self.get_timeline(entity_id) if entry.can_rewind
        ]
        if len(timeline) < 2:
            log.info(f"No earlier state recorded for {entity_id}")
            return None
        return await self.rewind_to(entity_id, timeline[1].timestamp)

    async def step_forward(self, entity_id: str, at: datetime) -> RewindResult | None:
        """Restore the first state recorded after ``at``, or return ``None`` if there is none."""

        upcoming = await self.next_states(entity_id, at, limit=1)
        if not upcoming:
            log.info(f"No later state recorded for {entity_id} after {isoformat(at)}")
            return None
        return await self.fast_forward_to(entity_id, upcoming[0].timestamp)

    async def next_states(
        self, entity_id: str, at: datetime, *, limit: int = DEFAULT_NAVIGATION_LIMIT
    ) -> list[TimelineEntry]:
        """Restorable entries recorded after ``at``, oldest first."""

        records = await self.activity_log.query(ActivityQuery(entity_id=entity_id, start_time=at))
        entries = [
            _timeline_entry(record)
            for record in ordered(records)
            if record.created_at > at and describes_local_state(record)
        ]
        return entries[:limit]

    async def previous_states(
        self, entity_id: str, at: datetime, *, limit: int = DEFAULT_NAVIGATION_LIMIT
    ) -> list[TimelineEntry]:
        """Restorable entries recorded before ``at``, newest first."""

        records = await self.activity_log.query(ActivityQuery(entity_id=entity_id, end_time=at))
        entries = [
            _timeline_entry(record)
            for record in reversed(ordered(records))
            if record.created_at < at and describes_local_state(record)
        ]
        return entries[:limit]

    async def apply_preview(self, entity_id: str | None = None) -> RewindResult:
        """Apply the pending preview for ``entity_id`` (or the only pending one)."""

        pending = self._pending_preview(entity_id)
        return await self.rewind_to(
            pending.entity_id, pending.timestamp, validate=pending.validate, preview=False
        )

    def cancel_preview(self, entity_id: str | None = None) -> RewindPreview | None:
        """Drop a pending preview; nothing was applied, so nothing is undone."""

        if entity_id is None and len(self._pending) != 1:
            if self._pending:
                raise ValidationError(
                    "Several previews are pending; name the entity to cancel",
                    reason="ambiguous_preview",
                )
            return None
        key = entity_id if entity_id is not None else next(iter(self._pending))
        preview = self._pending.pop(key, None)
        if preview is None:
            return None
        self._phases.pop(key, None)
        self.events.cancelled.publish(RewindEvent(key, target=preview.target))
        return preview

    def clear_cache(self) -> None:
        self._cache.clear()

    def state(self) -> RewindState:
        return RewindState(
            is_rewinding=self._latch,
            phases=dict(self._phases),
            pending_previews=tuple(sorted(self._pending)),
            cached_snapshots=len(self._cache),
        )

    # Internals ------------------------------------------------------------------------

    def _forget_delivered(self, records: tuple[ChangeRecord, ...]) -> None:
        """Late deliveries can change any cached instant of their entities."""

        entity_ids = {record.entity_id for record in records}
        self._cache.discard_where(lambda key: key[0] in entity_ids)

    def _validate(self, entity_id: str, timestamp: datetime) -> None:
        if timestamp > self.clock():
            raise ValidationError("Cannot rewind to future state", reason="future_timestamp")
        if self.tracker.is_dirty(entity_id):
            raise ValidationError(
                f"Entity {entity_id} has unsaved changes; sync or discard them first",
                reason="entity_dirty",
            )

    def _stage_preview(
        self, entity_id: str, timestamp: datetime, target: Snapshot, *, validate: bool
    ) -> RewindPreview:
        current = self.workspace.get_record(entity_id)
        current_values = dict(current.fields) if current is not None else None
        preview = RewindPreview(
            entity_id=entity_id,
            timestamp=timestamp,
            target=target,
            current=current_values,
            changes=tuple(diff_fields(current_values, _values(target))),
            validate=validate,
        )
        self._pending[entity_id] = preview
        self._phases[entity_id] = RewindPhase.PREVIEWING
        self.events.preview_ready.publish(target)
        return preview

    async def _apply(self, entity_id: str, timestamp: datetime, target: Snapshot) -> RewindResult:
        current = self.workspace.get_record(entity_id)
        before = dict(current.fields) if current is not None else None
        after = dict(target.values) if target.exists else None
        table_ref = target.table_ref or (current.table_ref if current is not None else None)

        if after is None:
            if current is not None:
                self.workspace.delete_record(entity_id)
        else:
            if table_ref is None:
                raise ValidationError(
                    f"Cannot restore {entity_id}: its table is unknown", reason="unknown_table"
                )
            self.workspace.put_record(table_ref, entity_id, after)

        record = self.tracker.track_change(
            target.record.entity_type,
            entity_id,
            ChangeAction.REWIND,
            before,
            after,
            table_ref=table_ref,
            metadata={
                "target_timestamp": isoformat(timestamp),
                "target_record_id": target.record.id,
            },
        )
        self._pending.pop(entity_id, None)
        self._phases.pop(entity_id, None)
        self._cache.discard_where(lambda key: key[0] == entity_id)
        delivery = await self.tracker.flush()
        delivery.raise_for_failure()
        log.info(f"Rewound {entity_id} to {isoformat(timestamp)} ({record.id})")
        return RewindResult(
            entity_id=entity_id,
            timestamp=timestamp,
            target=target,
            record=record,
            delivery=delivery,
        )

    def _pending_preview(self, entity_id: str | None) -> RewindPreview:
        if entity_id is not None:
            preview = self._pending.get(entity_id)
        elif len(self._pending) == 1:
            preview = next(iter(self._pending.values()))
        else:
            preview = None
        if preview is None:
            raise ValidationError("No pending rewind preview to apply", reason="no_preview")
        return preview


def _values(snapshot: Snapshot | None) -> dict[str, object] | None:
    if snapshot is None or not snapshot.exists:
        return None
    return dict(snapshot.values)


def _timeline_entry(record: ChangeRecord) -> TimelineEntry:
    if record.field is not None:
        changes: tuple[FieldDiff, ...] = ()
        if not same_value(record.before, record.after):
            changes = (
                FieldDiff(
                    record.field,
                    record.before,
                    record.after,
                    change_type_for(record.before, record.after),
                ),
            )
    else:
        changes = tuple(diff_fields(_as_fields(record.before), _as_fields(record.after)))
    return TimelineEntry(
        record_id=record.id,
        timestamp=record.created_at,
        action=record.action,
        agent=record.agent,
        field=record.field,
        changes=changes,
        can_rewind=describes_local_state(record),
    )


def _as_fields(value: object) -> dict[str, object] | None:
    if isinstance(value, Mapping):
        return dict(cast(Mapping[str, object], value))
    return None
