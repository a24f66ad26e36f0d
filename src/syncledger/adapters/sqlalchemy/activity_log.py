"""SQLAlchemy-backed activity log."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from syncledger.domain.codec import decode_agent, decode_resolution, encode_agent, encode_resolution
from syncledger.domain.model import ChangeAction, SyncChange, build_change
from syncledger.domain.ports import (
    ActivityLog,
    ActivityLogRejectedError,
    ActivityLogUnavailableError,
    ActivityQuery,
)

from .mappings import activity_record_table

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from sqlalchemy import Row, Select
    from sqlalchemy.engine import Engine

    from syncledger.domain.model import ChangeRecord

log = getLogger(__name__)


class SqlAlchemyActivityLog:
    """Append-only activity log in a relational database.

    Appending a record id that is already stored is a no-op, which makes
    redelivery after a failed flush safe. Session work runs in a worker thread
    so the event loop keeps serving the batch timer and sync passes.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )

    async def append(self, record: ChangeRecord) -> None:
        table = activity_record_table
        resolution = record.resolution if isinstance(record, SyncChange) else None

        def _write(session: Session) -> None:
            exists = session.execute(
                select(table.c.id).where(table.c.id == record.id)
            ).first()
            if exists is not None:
                log.debug(f"Activity record {record.id} already stored")
                return
            session.execute(
                table.insert().values(
                    id=record.id,
                    action=record.action.value,
                    entity_type=record.entity_type,
                    entity_id=record.entity_id,
                    field=record.field,
                    table_ref=record.table_ref,
                    before=record.before,
                    after=record.after,
                    checksum_before=record.checksum_before,
                    checksum_after=record.checksum_after,
                    agent=encode_agent(record.agent),
                    created_at=record.created_at,
                    record_metadata=dict(record.metadata),
                    resolution=encode_resolution(resolution) if resolution else None,
                )
            )

        await asyncio.to_thread(self._run, _write, commit=True)

    async def query(self, query: ActivityQuery) -> list[ChangeRecord]:
        table = activity_record_table
        stmt = _filtered(select(table), query).order_by(table.c.created_at, table.c.id)
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        rows = await asyncio.to_thread(self._run, lambda session: list(session.execute(stmt)))
        return [_to_record(row) for row in rows]

    async def get_snapshot(self, entity_id: str, timestamp: datetime) -> ChangeRecord | None:
        table = activity_record_table
        stmt = (
            select(table)
            .where(table.c.entity_id == entity_id, table.c.created_at <= timestamp)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(1)
        )
        row = await asyncio.to_thread(self._run, lambda session: session.execute(stmt).first())
        return _to_record(row) if row is not None else None

    def _run[T](self, work: Callable[[Session], T], *, commit: bool = False) -> T:
        try:
            if commit:
                with self._session_factory.begin() as session:
                    return work(session)
            with self._session_factory() as session:
                return work(session)
        except OperationalError as exc:
            raise ActivityLogUnavailableError(f"Activity database unavailable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise ActivityLogRejectedError(f"Activity database rejected the call: {exc}") from exc


def _filtered(stmt: Select[Any], query: ActivityQuery) -> Select[Any]:
    table = activity_record_table
    if query.entity_id is not None:
        stmt = stmt.where(table.c.entity_id == query.entity_id)
    if query.start_time is not None:
        stmt = stmt.where(table.c.created_at >= query.start_time)
    if query.end_time is not None:
        stmt = stmt.where(table.c.created_at <= query.end_time)
    if query.action is not None:
        stmt = stmt.where(table.c.action == query.action.value)
    return stmt


def _to_record(row: Row[Any]) -> ChangeRecord:
    action = ChangeAction(row.action)
    resolution_payload = cast("Mapping[str, object] | None", row.resolution)
    return build_change(
        action,
        resolution=decode_resolution(resolution_payload) if resolution_payload else None,
        id=row.id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        field=row.field,
        before=row.before,
        after=row.after,
        checksum_before=row.checksum_before,
        checksum_after=row.checksum_after,
        agent=decode_agent(cast("Mapping[str, object]", row.agent)),
        created_at=row.created_at,
        table_ref=row.table_ref,
        metadata=dict(cast("Mapping[str, object]", row.record_metadata)),
    )


if TYPE_CHECKING:
    _log_check: ActivityLog = SqlAlchemyActivityLog(cast("Engine", None))
