from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from syncledger.domain.errors import RewindBusyError, ValidationError
from syncledger.domain.events import RewindEvent
from syncledger.domain.model import (
    ChangeAction,
    ChangeType,
    RewindChange,
    RewindPhase,
    Side,
    SyncDirection,
    SyncResolution,
    build_change,
)
from syncledger.domain.rewind import RewindEngine, RewindPreview
from tests.support.ledger import T0, TABLE, InMemoryActivityLog

if TYPE_CHECKING:
    from collections.abc import Sequence

    from syncledger.domain.model import ChangeRecord
    from syncledger.domain.ports import ActivityQuery
    from syncledger.domain.tracking import ChangeTracker
    from tests.support.ledger import FakeClock, InMemoryWorkspace


@pytest.fixture
def history(
    tracker: ChangeTracker, workspace: InMemoryWorkspace
) -> list[ChangeRecord]:
    """rec_1 created at T0, renamed at T0+1s and marked done at T0+2s; all delivered."""

    created = tracker.track_change(
        "record", "rec_1", ChangeAction.CREATE, None, {"name": "Alice"}, table_ref=TABLE
    )
    renamed = tracker.track_change(
        "record", "rec_1", ChangeAction.UPDATE, "Alice", "Alicia", "name", table_ref=TABLE
    )
    done = tracker.track_change(
        "record", "rec_1", ChangeAction.UPDATE, None, True, "done", table_ref=TABLE
    )
    workspace.put_record(TABLE, "rec_1", {"name": "Alicia", "done": True})
    asyncio.run(tracker.flush())
    tracker.mark_clean("rec_1")
    return [created, renamed, done]


def test_preview_folds_records_up_to_the_instant(
    rewind_engine: RewindEngine, history: list[ChangeRecord]
) -> None:
    first = asyncio.run(rewind_engine.preview_at_time("rec_1", T0))
    second = asyncio.run(rewind_engine.preview_at_time("rec_1", T0 + timedelta(seconds=1)))
    before = asyncio.run(rewind_engine.preview_at_time("rec_1", T0 - timedelta(seconds=1)))

    assert first is not None
    assert first.values == {"name": "Alice"}
    assert first.record == history[0]
    assert second is not None
    assert second.values == {"name": "Alicia"}
    assert before is None
    assert rewind_engine.state().cached_snapshots == 2


def test_rewind_round_trip_restores_values_and_is_tracked(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    activity_log: InMemoryActivityLog,
) -> None:
    events: list[RewindEvent] = []
    rewind_engine.events.completed.subscribe(events.append)

    result = asyncio.run(rewind_engine.rewind_to("rec_1", T0))

    assert workspace.fields("rec_1") == {"name": "Alice"}
    assert isinstance(result.record, RewindChange)
    assert result.record.before == {"name": "Alicia", "done": True}
    assert result.record.after == {"name": "Alice"}
    assert result.record.target_timestamp == T0.isoformat()
    assert result.delivery.ok
    assert activity_log.records[-1] == result.record
    assert tracker.is_dirty("rec_1")
    assert tracker.undo() == result.record
    assert events[-1].target == result.target
    assert rewind_engine.phase("rec_1") is RewindPhase.IDLE


def test_rewind_to_future_state_is_rejected(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    activity_log: InMemoryActivityLog,
    clock: FakeClock,
) -> None:
    logged = len(activity_log.records)

    with pytest.raises(ValidationError, match="Cannot rewind to future state") as exc_info:
        asyncio.run(rewind_engine.rewind_to("rec_1", clock.now + timedelta(days=1)))

    assert exc_info.value.reason == "future_timestamp"
    assert len(activity_log.records) == logged
    assert not rewind_engine.is_rewinding


def test_rewind_refuses_dirty_entities(
    rewind_engine: RewindEngine, history: list[ChangeRecord], tracker: ChangeTracker
) -> None:
    tracker.track_change("record", "rec_1", ChangeAction.UPDATE, "Alicia", "Al", "name")

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(rewind_engine.rewind_to("rec_1", T0))

    assert exc_info.value.reason == "entity_dirty"


def test_rewind_without_recorded_state_is_rejected(rewind_engine: RewindEngine) -> None:
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(rewind_engine.rewind_to("ghost", T0))

    assert exc_info.value.reason == "no_snapshot"


def test_preview_then_apply(
    rewind_engine: RewindEngine, history: list[ChangeRecord], workspace: InMemoryWorkspace
) -> None:
    preview = asyncio.run(rewind_engine.rewind_to("rec_1", T0, preview=True))

    assert isinstance(preview, RewindPreview)
    assert preview.current == {"name": "Alicia", "done": True}
    assert [(diff.field, diff.change_type) for diff in preview.changes] == [
        ("done", ChangeType.REMOVED),
        ("name", ChangeType.MODIFIED),
    ]
    assert rewind_engine.phase("rec_1") is RewindPhase.PREVIEWING
    assert workspace.fields("rec_1") == {"name": "Alicia", "done": True}

    result = asyncio.run(rewind_engine.apply_preview())

    assert result.entity_id == "rec_1"
    assert workspace.fields("rec_1") == {"name": "Alice"}
    assert rewind_engine.state().pending_previews == ()


def test_cancel_preview_has_no_side_effects(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    workspace: InMemoryWorkspace,
    activity_log: InMemoryActivityLog,
) -> None:
    cancelled: list[RewindEvent] = []
    rewind_engine.events.cancelled.subscribe(cancelled.append)
    logged = len(activity_log.records)
    asyncio.run(rewind_engine.rewind_to("rec_1", T0, preview=True))

    preview = rewind_engine.cancel_preview()

    assert preview is not None
    assert [event.entity_id for event in cancelled] == ["rec_1"]
    assert rewind_engine.phase("rec_1") is RewindPhase.IDLE
    assert workspace.fields("rec_1") == {"name": "Alicia", "done": True}
    assert len(activity_log.records) == logged
    assert rewind_engine.cancel_preview() is None
    with pytest.raises(ValidationError):
        asyncio.run(rewind_engine.apply_preview())


def test_timeline_is_newest_first_and_marks_remote_sync_records(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    activity_log: InMemoryActivityLog,
) -> None:
    pushed = build_change(
        ChangeAction.SYNC,
        resolution=SyncResolution(
            session_id="sync_1", direction=SyncDirection.BIDIRECTIONAL, target=Side.REMOTE.value
        ),
        entity_type="record",
        entity_id="rec_1",
        field="name",
        before="Alice",
        after="Alicia",
        checksum_before="x",
        checksum_after="y",
        created_at=T0 + timedelta(seconds=3),
    )
    activity_log.records.append(pushed)

    timeline = asyncio.run(rewind_engine.get_timeline("rec_1"))

    assert [entry.record_id for entry in timeline] == [
        pushed.id,
        history[2].id,
        history[1].id,
        history[0].id,
    ]
    assert not timeline[0].can_rewind
    assert timeline[2].changes[0].field == "name"
    assert [diff.field for diff in timeline[3].changes] == ["name"]
    assert len(asyncio.run(rewind_engine.get_timeline("rec_1", limit=2))) == 2


def test_compare_states_diffs_two_instants(
    rewind_engine: RewindEngine, history: list[ChangeRecord]
) -> None:
    comparison = asyncio.run(
        rewind_engine.compare_states("rec_1", T0, T0 + timedelta(seconds=2))
    )

    assert comparison.first == {"name": "Alice"}
    assert comparison.second == {"name": "Alicia", "done": True}
    assert [diff.field for diff in comparison.differences] == ["done", "name"]


def test_step_backward_restores_previous_state(
    rewind_engine: RewindEngine, history: list[ChangeRecord], workspace: InMemoryWorkspace
) -> None:
    result = asyncio.run(rewind_engine.step_backward("rec_1"))

    assert result is not None
    assert workspace.fields("rec_1") == {"name": "Alicia"}
    assert asyncio.run(rewind_engine.step_backward("ghost")) is None


def test_rewind_to_deleted_state_removes_local_record(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    tracker: ChangeTracker,
    workspace: InMemoryWorkspace,
    clock: FakeClock,
) -> None:
    tracker.track_change(
        "record", "rec_1", ChangeAction.DELETE, {"name": "Alicia", "done": True}, None
    )
    workspace.delete_record("rec_1")
    asyncio.run(tracker.flush())
    tracker.mark_clean("rec_1")
    deleted_at = clock.now
    workspace.put_record(TABLE, "rec_1", {"name": "Restored by hand"})

    asyncio.run(rewind_engine.rewind_to("rec_1", deleted_at))

    assert workspace.get_record("rec_1") is None


def test_late_delivery_refreshes_cached_previews(
    rewind_engine: RewindEngine, tracker: ChangeTracker
) -> None:
    tracker.track_change(
        "record", "rec_1", ChangeAction.CREATE, None, {"name": "Alice"}, table_ref=TABLE
    )
    asyncio.run(tracker.flush())
    tracker.track_change(
        "record", "rec_1", ChangeAction.UPDATE, "Alice", "Alicia", "name", table_ref=TABLE
    )
    later = T0 + timedelta(seconds=30)

    before_delivery = asyncio.run(rewind_engine.preview_at_time("rec_1", later))
    asyncio.run(tracker.flush())
    after_delivery = asyncio.run(rewind_engine.preview_at_time("rec_1", later))

    assert before_delivery is not None
    assert before_delivery.values == {"name": "Alice"}
    assert after_delivery is not None
    assert after_delivery.values == {"name": "Alicia"}


def test_next_and_previous_states_exclude_the_current_instant(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    activity_log: InMemoryActivityLog,
) -> None:
    activity_log.records.append(
        build_change(
            ChangeAction.SYNC,
            resolution=SyncResolution(
                session_id="sync_1",
                direction=SyncDirection.BIDIRECTIONAL,
                target=Side.REMOTE.value,
            ),
            entity_type="record",
            entity_id="rec_1",
            field="name",
            before="Alice",
            after="Alicia",
            checksum_before="x",
            checksum_after="y",
            created_at=T0 + timedelta(milliseconds=1500),
        )
    )

    upcoming = asyncio.run(rewind_engine.next_states("rec_1", T0))
    earlier = asyncio.run(rewind_engine.previous_states("rec_1", T0 + timedelta(seconds=2)))

    assert [entry.record_id for entry in upcoming] == [history[1].id, history[2].id]
    assert [entry.record_id for entry in earlier] == [history[1].id, history[0].id]
    assert len(asyncio.run(rewind_engine.next_states("rec_1", T0, limit=1))) == 1
    assert asyncio.run(rewind_engine.previous_states("rec_1", T0)) == []
    assert asyncio.run(rewind_engine.next_states("rec_1", T0 + timedelta(seconds=2))) == []


def test_step_forward_restores_the_next_recorded_state(
    rewind_engine: RewindEngine,
    history: list[ChangeRecord],
    tracker: ChangeTracker,
    workspace: InMemoryWorkspace,
) -> None:
    asyncio.run(rewind_engine.rewind_to("rec_1", T0))
    tracker.mark_clean("rec_1")

    result = asyncio.run(rewind_engine.step_forward("rec_1", T0))

    assert result is not None
    assert result.timestamp == history[1].created_at
    assert workspace.fields("rec_1") == {"name": "Alicia"}
    assert asyncio.run(rewind_engine.step_forward("ghost", T0)) is None


class _BlockingLog(InMemoryActivityLog):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def query(self, query: ActivityQuery) -> Sequence[ChangeRecord]:
        await self.release.wait()
        return await super().query(query)


def test_concurrent_rewind_is_rejected(
    workspace: InMemoryWorkspace, tracker: ChangeTracker, clock: FakeClock
) -> None:
    log = _BlockingLog()
    engine = RewindEngine(activity_log=log, workspace=workspace, tracker=tracker, clock=clock)

    async def scenario() -> None:
        first = asyncio.create_task(engine.rewind_to("rec_1", T0, preview=True))
        await asyncio.sleep(0)
        assert engine.is_rewinding
        with pytest.raises(RewindBusyError):
            await engine.rewind_to("rec_2", T0)
        log.release.set()
        with pytest.raises(ValidationError):
            await first

    asyncio.run(scenario())

    assert not engine.is_rewinding
