from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from syncledger.domain.errors import ErrorCategory, SyncBusyError, SyncFailure
from syncledger.domain.model import (
    ChangeAction,
    ConflictOutcome,
    ConflictStrategy,
    Side,
    SuperposedValue,
    SyncChange,
    SyncDirection,
    SyncStep,
)
from syncledger.domain.sync import SyncOrchestrator
from tests.support.ledger import TABLE, InMemoryRemoteStore

if TYPE_CHECKING:
    from syncledger.domain.ports import TableDefinition
    from syncledger.domain.sync import SyncReport
    from syncledger.domain.tracking import ChangeTracker
    from tests.support.ledger import FakeClock, InMemoryActivityLog, InMemoryWorkspace


def _edit(
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    entity_id: str,
    name: str,
    value: object,
) -> None:
    fields = workspace.fields(entity_id) or {}
    before = fields.get(name)
    fields[name] = value
    workspace.put_record(TABLE, entity_id, fields)
    tracker.track_change(
        "record", entity_id, ChangeAction.UPDATE, before, value, name, table_ref=TABLE
    )


def _sync(orchestrator: SyncOrchestrator) -> SyncReport:
    return asyncio.run(orchestrator.run_pass())


@pytest.fixture
def synced(
    orchestrator: SyncOrchestrator,
    remote: InMemoryRemoteStore,
) -> SyncOrchestrator:
    remote.seed(TABLE, "rec1", {"Name": "Write report", "Status": "Open"})
    _sync(orchestrator)
    return orchestrator


def test_first_pass_pulls_remote_records(
    orchestrator: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    activity_log: InMemoryActivityLog,
) -> None:
    remote.seed(TABLE, "rec1", {"Name": "Write report"})

    report = _sync(orchestrator)

    assert workspace.fields("rec1") == {"Name": "Write report"}
    assert report.local.created == 1
    assert report.records_logged == 1
    assert workspace.get_baseline("rec1") is not None
    record = activity_log.records[0]
    assert isinstance(record, SyncChange)
    assert record.resolution.target == "local"
    assert record.metadata["operation"] == "create"
    assert orchestrator.state is SyncStep.IDLE


def test_second_pass_without_changes_is_a_no_op(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    activity_log: InMemoryActivityLog,
) -> None:
    logged = len(activity_log.records)

    report = _sync(synced)

    assert report.examined == 0
    assert report.skipped == 1
    assert not report.changed
    assert len(activity_log.records) == logged
    assert remote.calls == []


def test_local_edit_is_pushed_and_cleared(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
) -> None:
    _edit(workspace, tracker, "rec1", "Status", "Done")

    report = _sync(synced)

    assert remote.rows[TABLE]["rec1"]["Status"] == "Done"
    assert report.remote.updated == 1
    assert report.reconciled == ["rec1"]
    assert not tracker.is_dirty("rec1")
    assert _sync(synced).examined == 0


def test_remote_edit_is_pulled(
    synced: SyncOrchestrator, remote: InMemoryRemoteStore, workspace: InMemoryWorkspace
) -> None:
    remote.rows[TABLE]["rec1"]["Status"] = "Blocked"

    report = _sync(synced)

    assert workspace.fields("rec1") == {"Name": "Write report", "Status": "Blocked"}
    assert report.local.updated == 1
    assert report.remote.total == 0


def test_concurrent_edits_are_superposed(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    activity_log: InMemoryActivityLog,
) -> None:
    conflicts: list[object] = []
    synced.events.conflict.subscribe(conflicts.append)
    _edit(workspace, tracker, "rec1", "Status", "Complete")
    remote.rows[TABLE]["rec1"]["Status"] = "In Progress"

    report = _sync(synced)

    cell = (workspace.fields("rec1") or {})["Status"]
    assert isinstance(cell, SuperposedValue)
    assert {item.value for item in cell} == {"Complete", "In Progress"}
    assert cell.dominant_value == "In Progress"
    assert remote.rows[TABLE]["rec1"]["Status"] == "In Progress"
    assert report.superposed == 1
    assert len(conflicts) == 1
    assert synced.recent_conflicts()[0].outcome is ConflictOutcome.SUPERPOSED
    sync_records = [record for record in activity_log.records if isinstance(record, SyncChange)]
    assert sync_records[-1].resolution.outcome is ConflictOutcome.SUPERPOSED
    assert not tracker.is_dirty("rec1")

    logged = len(activity_log.records)
    again = _sync(synced)
    assert again.examined == 0
    assert len(activity_log.records) == logged
    assert (workspace.fields("rec1") or {})["Status"] == cell


def test_local_wins_strategy_overwrites_remote(
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    activity_log: InMemoryActivityLog,
    clock: FakeClock,
) -> None:
    orchestrator = SyncOrchestrator(
        remote=remote,
        workspace=workspace,
        tracker=tracker,
        strategy=ConflictStrategy.LOCAL_WINS,
        clock=clock,
    )
    remote.seed(TABLE, "rec1", {"Status": "Open"})
    _sync(orchestrator)
    _edit(workspace, tracker, "rec1", "Status", "Complete")
    remote.rows[TABLE]["rec1"]["Status"] = "In Progress"

    report = _sync(orchestrator)

    assert remote.rows[TABLE]["rec1"]["Status"] == "Complete"
    assert workspace.fields("rec1") == {"Status": "Complete"}
    assert report.conflicts[0].outcome is ConflictOutcome.OVERRIDE

    logged = len(activity_log.records)
    again = _sync(orchestrator)
    assert again.examined == 0
    assert len(activity_log.records) == logged
    assert remote.rows[TABLE]["rec1"]["Status"] == "Complete"


def test_local_create_is_pushed_and_rekeyed(
    orchestrator: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
) -> None:
    workspace.put_record(TABLE, "draft-1", {"Name": "New task"})
    tracker.track_change(
        "record", "draft-1", ChangeAction.CREATE, None, {"Name": "New task"}, table_ref=TABLE
    )

    report = _sync(orchestrator)

    assert remote.rows[TABLE] == {"rec0001": {"Name": "New task"}}
    assert workspace.get_record("draft-1") is None
    assert workspace.fields("rec0001") == {"Name": "New task"}
    assert workspace.get_baseline("rec0001") is not None
    assert report.remote.created == 1
    assert not tracker.is_dirty("draft-1")
    assert _sync(orchestrator).examined == 0


def test_remote_delete_removes_untouched_local_record(
    synced: SyncOrchestrator, remote: InMemoryRemoteStore, workspace: InMemoryWorkspace
) -> None:
    del remote.rows[TABLE]["rec1"]

    report = _sync(synced)

    assert workspace.get_record("rec1") is None
    assert workspace.get_baseline("rec1") is None
    assert report.local.deleted == 1


def test_remote_delete_keeps_local_edit(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
) -> None:
    _edit(workspace, tracker, "rec1", "Status", "Done")
    del remote.rows[TABLE]["rec1"]

    _sync(synced)

    assert remote.rows[TABLE] == {"rec0001": {"Name": "Write report", "Status": "Done"}}
    assert workspace.fields("rec0001") == {"Name": "Write report", "Status": "Done"}


def test_local_delete_is_pushed(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
) -> None:
    before = workspace.fields("rec1")
    workspace.delete_record("rec1")
    tracker.track_change("record", "rec1", ChangeAction.DELETE, before, None, table_ref=TABLE)

    report = _sync(synced)

    assert "rec1" not in remote.rows[TABLE]
    assert report.remote.deleted == 1
    assert not tracker.is_dirty("rec1")


def test_remote_to_local_keeps_local_edit_dirty(
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    clock: FakeClock,
) -> None:
    orchestrator = SyncOrchestrator(
        remote=remote,
        workspace=workspace,
        tracker=tracker,
        direction=SyncDirection.REMOTE_TO_LOCAL,
        clock=clock,
    )
    remote.seed(TABLE, "rec1", {"Status": "Open", "Owner": "ada"})
    _sync(orchestrator)
    _edit(workspace, tracker, "rec1", "Status", "Done")
    remote.rows[TABLE]["rec1"]["Owner"] = "grace"

    _sync(orchestrator)

    assert remote.rows[TABLE]["rec1"]["Status"] == "Open"
    assert workspace.fields("rec1") == {"Status": "Done", "Owner": "grace"}
    assert tracker.is_dirty("rec1")
    assert remote.calls == []


def test_remote_to_local_forces_remote_value_on_conflict(
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    clock: FakeClock,
) -> None:
    orchestrator = SyncOrchestrator(
        remote=remote,
        workspace=workspace,
        tracker=tracker,
        direction=SyncDirection.REMOTE_TO_LOCAL,
        clock=clock,
    )
    remote.seed(TABLE, "rec1", {"Status": "Open"})
    _sync(orchestrator)
    _edit(workspace, tracker, "rec1", "Status", "Done")
    remote.rows[TABLE]["rec1"]["Status"] = "Blocked"

    report = _sync(orchestrator)

    assert workspace.fields("rec1") == {"Status": "Blocked"}
    conflict = report.conflicts[0]
    assert conflict.outcome is ConflictOutcome.OVERRIDE
    assert getattr(conflict, "winner", None) is Side.REMOTE


def test_failure_leaves_dirty_flags_and_next_pass_recovers(
    synced: SyncOrchestrator,
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
) -> None:
    failures: list[SyncFailure] = []
    synced.events.failed.subscribe(failures.append)
    _edit(workspace, tracker, "rec1", "Status", "Done")
    remote.fail_on.add("write_record")

    with pytest.raises(SyncFailure) as exc_info:
        _sync(synced)

    failure = exc_info.value
    assert failure.step is SyncStep.APPLYING
    assert failure.failure_category is ErrorCategory.TRANSIENT
    assert failure.reason == "remote_unavailable"
    assert failure.retryable
    assert failure.entity_ids == ("rec1",)
    assert synced.state is SyncStep.FAILED
    assert failures == [failure]
    assert tracker.is_dirty("rec1")

    remote.fail_on.clear()
    _sync(synced)

    assert remote.rows[TABLE]["rec1"]["Status"] == "Done"
    assert not tracker.is_dirty("rec1")
    assert synced.last_failure is None


def test_activity_log_failure_fails_the_logging_step(
    synced: SyncOrchestrator,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    activity_log: InMemoryActivityLog,
) -> None:
    _edit(workspace, tracker, "rec1", "Status", "Done")
    activity_log.failures_left = 1

    with pytest.raises(SyncFailure) as exc_info:
        _sync(synced)

    assert exc_info.value.step is SyncStep.LOGGING
    assert tracker.is_dirty("rec1")
    assert tracker.pending > 0


def test_unknown_configured_table_fails_fetching(
    remote: InMemoryRemoteStore, workspace: InMemoryWorkspace, tracker: ChangeTracker
) -> None:
    orchestrator = SyncOrchestrator(
        remote=remote, workspace=workspace, tracker=tracker, tables=["Projects"]
    )

    with pytest.raises(SyncFailure) as exc_info:
        _sync(orchestrator)

    assert exc_info.value.step is SyncStep.FETCHING
    assert exc_info.value.reason == "unknown_table"


class _BlockingRemote(InMemoryRemoteStore):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def fetch_schema(self) -> list[TableDefinition]:
        await self.release.wait()
        return await super().fetch_schema()


def test_concurrent_pass_is_rejected(workspace: InMemoryWorkspace, tracker: ChangeTracker) -> None:
    remote = _BlockingRemote()
    orchestrator = SyncOrchestrator(remote=remote, workspace=workspace, tracker=tracker)

    async def scenario() -> None:
        first = asyncio.create_task(orchestrator.run_pass())
        await asyncio.sleep(0)
        assert orchestrator.is_running
        with pytest.raises(SyncBusyError):
            await orchestrator.run_pass()
        remote.release.set()
        await first

    asyncio.run(scenario())

    assert not orchestrator.is_running
