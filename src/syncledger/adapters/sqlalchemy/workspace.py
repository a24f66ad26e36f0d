"""SQLAlchemy-backed local workspace."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from syncledger.domain.ports import Baseline, LocalRecord, LocalWorkspace

from .mappings import sync_baseline_table, workspace_record_table

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy import Row
    from sqlalchemy.engine import Engine


class SqlAlchemyWorkspace:
    """Local records and reconciliation baselines kept in one database.

    Every call runs in its own short transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )

    def list_records(self, table_ref: str) -> list[LocalRecord]:
        stmt = (
            select(workspace_record_table)
            .where(workspace_record_table.c.table_ref == table_ref)
            .order_by(workspace_record_table.c.entity_id)
        )
        with self._session_factory() as session:
            return [_to_record(row) for row in session.execute(stmt)]

    def get_record(self, entity_id: str) -> LocalRecord | None:
        stmt = select(workspace_record_table).where(
            workspace_record_table.c.entity_id == entity_id
        )
        with self._session_factory() as session:
            row = session.execute(stmt).first()
        return _to_record(row) if row is not None else None

    def put_record(self, table_ref: str, entity_id: str, fields: Mapping[str, object]) -> None:
        table = workspace_record_table
        with self._session_factory.begin() as session:
            session.execute(delete(table).where(table.c.entity_id == entity_id))
            session.execute(
                table.insert().values(
                    entity_id=entity_id, table_ref=table_ref, fields=dict(fields)
                )
            )

    def delete_record(self, entity_id: str) -> None:
        table = workspace_record_table
        with self._session_factory.begin() as session:
            session.execute(delete(table).where(table.c.entity_id == entity_id))

    def list_baselines(self, table_ref: str) -> list[Baseline]:
        stmt = (
            select(sync_baseline_table)
            .where(sync_baseline_table.c.table_ref == table_ref)
            .order_by(sync_baseline_table.c.entity_id)
        )
        with self._session_factory() as session:
            return [_to_baseline(row) for row in session.execute(stmt)]

    def get_baseline(self, entity_id: str) -> Baseline | None:
        stmt = select(sync_baseline_table).where(sync_baseline_table.c.entity_id == entity_id)
        with self._session_factory() as session:
            row = session.execute(stmt).first()
        return _to_baseline(row) if row is not None else None

    def save_baseline(self, baseline: Baseline) -> None:
        table = sync_baseline_table
        with self._session_factory.begin() as session:
            session.execute(delete(table).where(table.c.entity_id == baseline.entity_id))
            session.execute(
                table.insert().values(
                    entity_id=baseline.entity_id,
                    table_ref=baseline.table_ref,
                    local_fields=dict(baseline.local_fields),
                    remote_fields=dict(baseline.remote_fields),
                    remote_checksum=baseline.remote_checksum,
                    reconciled_at=baseline.reconciled_at,
                )
            )

    def drop_baseline(self, entity_id: str) -> None:
        table = sync_baseline_table
        with self._session_factory.begin() as session:
            session.execute(delete(table).where(table.c.entity_id == entity_id))


def _to_record(row: Row[Any]) -> LocalRecord:
    return LocalRecord(
        entity_id=row.entity_id,
        table_ref=row.table_ref,
        fields=dict(cast("dict[str, object]", row.fields)),
    )


def _to_baseline(row: Row[Any]) -> Baseline:
    return Baseline(
        entity_id=row.entity_id,
        table_ref=row.table_ref,
        local_fields=dict(cast("dict[str, object]", row.local_fields)),
        remote_fields=dict(cast("dict[str, object]", row.remote_fields)),
        remote_checksum=row.remote_checksum,
        reconciled_at=row.reconciled_at,
    )


if TYPE_CHECKING:
    _workspace_check: LocalWorkspace = SqlAlchemyWorkspace(cast("Engine", None))
