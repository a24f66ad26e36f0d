"""Record local mutations, track dirty entities and batch log delivery."""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from syncledger.domain.bounded import BoundedStack
from syncledger.domain.checksum import checksum
from syncledger.domain.clock import utcnow
from syncledger.domain.errors import SyncLedgerError, ValidationError
from syncledger.domain.events import ChangeTrackerEvents, DirtyStateChanged
from syncledger.domain.model import ChangeAction, build_change
from syncledger.domain.ports.identity import resolve_agent

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime

    from syncledger.domain.clock import Clock
    from syncledger.domain.model import ChangeRecord
    from syncledger.domain.ports import ActivityLog, IdentityProvider

log = getLogger(__name__)

DEFAULT_UNDO_CAPACITY = 50
DEFAULT_HISTORY_CAPACITY = 500
DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_SECONDS = 2.0


@dataclass(frozen=True, slots=True)
class FlushOutcome:
    delivered: int
    failed: int
    remaining: int
    error: SyncLedgerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(frozen=True, slots=True)
class TrackerStats:
    tracked: int
    dirty: int
    queued: int
    delivered: int
    undo_depth: int
    redo_depth: int
    evicted: int


class ChangeTracker:
    """Turns local mutations into change records.

    Every tracked record marks its entity dirty, lands on the undo stack and is
    queued for the activity log. Queued records are delivered by ``flush`` or
    by the batch timer started with ``start``; both hold the same lock, so a
    tick never overlaps an explicit flush. Undo and redo queue reversal
    records that never enter the undo or redo stacks.
    """

    def __init__(
        self,
        activity_log: ActivityLog,
        *,
        identity: IdentityProvider | None = None,
        clock: Clock = utcnow,
        undo_capacity: int = DEFAULT_UNDO_CAPACITY,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1")
        if batch_delay <= 0:
            raise ValueError("Batch delay must be positive")
        self.activity_log = activity_log
        self.identity = identity
        self.clock = clock
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.events = ChangeTrackerEvents.create()

        self._history_capacity = history_capacity
        self._history: dict[str, BoundedStack[ChangeRecord]] = {}
        self._undo: BoundedStack[ChangeRecord] = BoundedStack(undo_capacity)
        self._redo: BoundedStack[ChangeRecord] = BoundedStack(undo_capacity)
        self._generations: dict[str, int] = {}
        self._dirty: set[str] = set()
        self._queue: deque[ChangeRecord] = deque()
        self._delivery_lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self._tracked = 0
        self._delivered = 0

    # Recording -----------------------------------------------------------------

    def track_change(
        self,
        entity_type: str,
        entity_id: str,
        action: ChangeAction,
        before: object,
        after: object,
        field: str | None = None,
        *,
        table_ref: str | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> ChangeRecord:
        if not entity_id:
            raise ValidationError("Change records need an entity id", reason="missing_entity_id")
        if action is ChangeAction.SYNC:
            raise ValidationError(
                "Sync records are produced by sync passes, not tracked directly",
                reason="sync_action_not_trackable",
            )

        record = self._stamp(
            action,
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
            before=before,
            after=after,
            table_ref=table_ref,
            metadata=metadata,
        )
        self._undo.push(record)
        self._redo.clear()
        self._accept(record)
        return record

    def enqueue(self, records: Iterable[ChangeRecord]) -> int:
        """Queue externally produced records (e.g. sync records) for delivery."""

        count = 0
        for record in records:
            self._remember(record)
            self._queue.append(record)
            count += 1
        return count

    # Dirty state ----------------------------------------------------------------

    def is_dirty(self, entity_id: str) -> bool:
        return entity_id in self._dirty

    def dirty_entities(self) -> frozenset[str]:
        return frozenset(self._dirty)

    def dirty_generation(self, entity_id: str) -> int:
        """Return the number of local mutations recorded so far for ``entity_id``."""

        return self._generations.get(entity_id, 0)

    def mark_clean(self, entity_id: str, *, up_to_generation: int | None = None) -> bool:
        """Clear the dirty flag unless a change newer than ``up_to_generation`` arrived."""

        if entity_id not in self._dirty:
            return False
        if up_to_generation is not None and self.dirty_generation(entity_id) > up_to_generation:
            log.debug(f"{entity_id} changed during reconciliation; keeping it dirty")
            return False
        self._dirty.discard(entity_id)
        self.events.clean.publish(DirtyStateChanged(entity_id, len(self._dirty)))
        return True

    def _mark_dirty(self, entity_id: str) -> None:
        self._generations[entity_id] = self.dirty_generation(entity_id) + 1
        if entity_id in self._dirty:
            return
        self._dirty.add(entity_id)
        self.events.dirty.publish(DirtyStateChanged(entity_id, len(self._dirty)))

    # Undo / redo ----------------------------------------------------------------

    def undo(self) -> ChangeRecord | None:
        """Pop the latest change; callers restore its ``before`` value.

        The reversal is logged as a new record carrying ``undo_of`` in its
        metadata, so replaying the activity log sees the restored value.
        """

        record = self._undo.pop()
        if record is None:
            log.debug("Nothing to undo")
            return None
        self._redo.push(record)
        self._accept(self._reversal(record, record.after, record.before, link="undo_of"))
        self.events.undo.publish(record)
        return record

    def redo(self) -> ChangeRecord | None:
        """Re-apply the latest undone change; callers restore its ``after`` value."""

        record = self._redo.pop()
        if record is None:
            log.debug("Nothing to redo")
            return None
        self._undo.push(record)
        self._accept(self._reversal(record, record.before, record.after, link="redo_of"))
        self.events.redo.publish(record)
        return record

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear_history(self) -> None:
        self._undo.clear()
        self._redo.clear()

    # Queries -----------------------------------------------------------------------

    def changes(
        self,
        entity_id: str,
        *,
        since: datetime | None = None,
        action: ChangeAction | None = None,
        field: str | None = None,
        limit: int | None = None,
    ) -> list[ChangeRecord]:
        """Return remembered records for ``entity_id``, oldest first."""

        history = self._history.get(entity_id)
        if history is None:
            return []
        matches = [
            record
            for record in history
            if (since is None or record.created_at >= since)
            and (action is None or record.action is action)
            and (field is None or record.field == field)
        ]
        if limit is not None:
            matches = matches[-limit:] if limit else []
        return matches

    def latest_change(self, entity_id: str, field: str | None = None) -> ChangeRecord | None:
        matches = self.changes(entity_id, field=field, limit=1)
        return matches[0] if matches else None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def stats(self) -> TrackerStats:
        return TrackerStats(
            tracked=self._tracked,
            dirty=len(self._dirty),
            queued=len(self._queue),
            delivered=self._delivered,
            undo_depth=len(self._undo),
            redo_depth=len(self._redo),
            evicted=self._undo.evicted,
        )

    def _stamp(
        self,
        action: ChangeAction,
        *,
        entity_type: str,
        entity_id: str,
        field: str | None,
        before: object,
        after: object,
        table_ref: str | None,
        metadata: Mapping[str, object] | None,
    ) -> ChangeRecord:
        return build_change(
            action,
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
            before=before,
            after=after,
            checksum_before=checksum(before),
            checksum_after=checksum(after),
            agent=resolve_agent(self.identity),
            created_at=self.clock(),
            table_ref=table_ref,
            metadata=dict(metadata or {}),
        )

    def _reversal(
        self, record: ChangeRecord, before: object, after: object, *, link: str
    ) -> ChangeRecord:
        """Build the record moving ``record``'s entity from ``before`` back to ``after``."""

        if record.field is not None:
            action = ChangeAction.UPDATE
        elif after is None:
            action = ChangeAction.DELETE
        elif before is None:
            action = ChangeAction.CREATE
        else:
            action = ChangeAction.UPDATE
        return self._stamp(
            action,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            field=record.field,
            before=before,
            after=after,
            table_ref=record.table_ref,
            metadata={link: record.id},
        )

    def _accept(self, record: ChangeRecord) -> None:
        self._remember(record)
        self._queue.append(record)
        self._tracked += 1
        log.debug(
            f"Tracked {record.action} on {record.entity_type} {record.entity_id} ({record.id})"
        )
        self._mark_dirty(record.entity_id)
        self.events.change.publish(record)

    def _remember(self, record: ChangeRecord) -> None:
        history = self._history.get(record.entity_id)
        if history is None:
            history = self._history[record.entity_id] = BoundedStack(self._history_capacity)
        history.push(record)

    # Delivery ------------------------------------------------------------------------

    async def flush(self) -> FlushOutcome:
        """Deliver every queued record now."""

        async with self._delivery_lock:
            return await self._deliver(limit=None)

    async def start(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        self._timer = asyncio.create_task(self._run_timer(), name="change-tracker-batch")

    async def stop(self) -> FlushOutcome:
        """Stop the batch timer and make a final delivery attempt."""

        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        return await self.flush()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.batch_delay)
            if not self._queue:
                continue
            async with self._delivery_lock:
                outcome = await self._deliver(limit=self.batch_size)
            if not outcome.ok:
                log.warning(
                    f"Batch delivery stopped after {outcome.delivered} record(s); "
                    f"{outcome.remaining} queued for retry: {outcome.error}"
                )

    async def _deliver(self, *, limit: int | None) -> FlushOutcome:
        count = len(self._queue) if limit is None else min(limit, len(self._queue))
        batch = [self._queue.popleft() for _ in range(count)]
        delivered = 0
        for index, record in enumerate(batch):
            try:
                await self.activity_log.append(record)
            except Exception as exc:
                self._queue.extendleft(reversed(batch[index:]))
                self._delivered += delivered
                self._announce(batch[:index])
                if not isinstance(exc, SyncLedgerError):
                    raise
                return FlushOutcome(
                    delivered=delivered,
                    failed=1,
                    remaining=len(self._queue),
                    error=exc,
                )
            delivered += 1
        self._delivered += delivered
        if delivered:
            log.debug(f"Delivered {delivered} change record(s) to the activity log")
        self._announce(batch)
        return FlushOutcome(delivered=delivered, failed=0, remaining=len(self._queue))

    def _announce(self, delivered: list[ChangeRecord]) -> None:
        if delivered:
            self.events.delivered.publish(tuple(delivered))
