"""In-memory collaborators for exercising the sync and rewind core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from syncledger.domain.model import Agent
from syncledger.domain.ports import (
    ActivityLogUnavailableError,
    Baseline,
    FieldDefinition,
    LocalRecord,
    RemoteRecord,
    RemoteUnavailableError,
    TableDefinition,
)
from syncledger.domain.rewind.replay import ordered

if TYPE_CHECKING:
    from collections.abc import Mapping

    from syncledger.domain.model import ChangeRecord
    from syncledger.domain.ports import ActivityQuery

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
TABLE = "tblTasks"


class FakeClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@dataclass(slots=True)
class StaticIdentity:
    agent: Agent = field(default_factory=lambda: Agent(id="u-1", name="Ada"))
    fail: bool = False

    def current_agent(self) -> Agent:
        if self.fail:
            raise RuntimeError("identity service down")
        return self.agent


class InMemoryRemoteStore:
    def __init__(self, tables: Mapping[str, str] | None = None) -> None:
        self.tables = dict(tables or {TABLE: "Tasks"})
        self.rows: dict[str, dict[str, dict[str, object]]] = {ref: {} for ref in self.tables}
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_on: set[str] = set()
        self._next_id = 0

    def seed(self, table_ref: str, record_id: str, fields: Mapping[str, object]) -> None:
        self.rows[table_ref][record_id] = dict(fields)

    async def fetch_schema(self) -> list[TableDefinition]:
        self._maybe_fail("fetch_schema")
        return [
            TableDefinition(
                ref=ref,
                name=name,
                fields=(FieldDefinition(id="fld1", name="Name", type="singleLineText"),),
            )
            for ref, name in self.tables.items()
        ]

    async def fetch_records(self, table_ref: str) -> list[RemoteRecord]:
        self._maybe_fail("fetch_records")
        return [
            RemoteRecord(id=record_id, fields=dict(fields))
            for record_id, fields in sorted(self.rows[table_ref].items())
        ]

    async def write_record(self, table_ref: str, record: RemoteRecord) -> RemoteRecord:
        self._maybe_fail("write_record")
        if record.id is None:
            self._next_id += 1
            record_id = f"rec{self._next_id:04d}"
            self.rows[table_ref][record_id] = dict(record.fields)
            self.calls.append(("create", table_ref, record_id))
            return RemoteRecord(id=record_id, fields=dict(record.fields))
        stored = self.rows[table_ref][record.id]
        for name, value in record.fields.items():
            if value is None:
                stored.pop(name, None)
            else:
                stored[name] = value
        self.calls.append(("update", table_ref, record.id))
        return RemoteRecord(id=record.id, fields=dict(stored))

    async def delete_record(self, table_ref: str, record_id: str) -> None:
        self._maybe_fail("delete_record")
        self.rows[table_ref].pop(record_id, None)
        self.calls.append(("delete", table_ref, record_id))

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RemoteUnavailableError(f"{operation} failed")


class InMemoryActivityLog:
    def __init__(self) -> None:
        self.records: list[ChangeRecord] = []
        self.failures_left = 0

    async def append(self, record: ChangeRecord) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise ActivityLogUnavailableError()
        self.records.append(record)

    async def query(self, query: ActivityQuery) -> list[ChangeRecord]:
        matches = [
            record
            for record in ordered(self.records)
            if (query.entity_id is None or record.entity_id == query.entity_id)
            and (query.start_time is None or record.created_at >= query.start_time)
            and (query.end_time is None or record.created_at <= query.end_time)
            and (query.action is None or record.action is query.action)
        ]
        matches = matches[query.offset :]
        return matches[: query.limit] if query.limit is not None else matches

    async def get_snapshot(self, entity_id: str, timestamp: datetime) -> ChangeRecord | None:
        matches = [
            record
            for record in ordered(self.records)
            if record.entity_id == entity_id and record.created_at <= timestamp
        ]
        return matches[-1] if matches else None


class InMemoryWorkspace:
    def __init__(self) -> None:
        self.records: dict[str, LocalRecord] = {}
        self.baselines: dict[str, Baseline] = {}

    def list_records(self, table_ref: str) -> list[LocalRecord]:
        return [
            LocalRecord(record.entity_id, record.table_ref, dict(record.fields))
            for record in self.records.values()
            if record.table_ref == table_ref
        ]

    def get_record(self, entity_id: str) -> LocalRecord | None:
        record = self.records.get(entity_id)
        if record is None:
            return None
        return LocalRecord(record.entity_id, record.table_ref, dict(record.fields))

    def put_record(self, table_ref: str, entity_id: str, fields: Mapping[str, object]) -> None:
        self.records[entity_id] = LocalRecord(entity_id, table_ref, dict(fields))

    def delete_record(self, entity_id: str) -> None:
        self.records.pop(entity_id, None)

    def list_baselines(self, table_ref: str) -> list[Baseline]:
        return [item for item in self.baselines.values() if item.table_ref == table_ref]

    def get_baseline(self, entity_id: str) -> Baseline | None:
        return self.baselines.get(entity_id)

    def save_baseline(self, baseline: Baseline) -> None:
        self.baselines[baseline.entity_id] = baseline

    def drop_baseline(self, entity_id: str) -> None:
        self.baselines.pop(entity_id, None)

    def fields(self, entity_id: str) -> dict[str, object] | None:
        record = self.records.get(entity_id)
        return dict(record.fields) if record is not None else None
