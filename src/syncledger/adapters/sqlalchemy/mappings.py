"""SQLAlchemy table metadata for the workspace, baselines and activity log."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Column,
    DateTime,
    Dialect,
    Index,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from syncledger.domain.codec import from_jsonable, to_jsonable

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class EncodedValue(TypeDecorator[Any]):
    """Field values stored as JSON text, superposed cells included."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        _ = dialect
        return json.dumps(to_jsonable(value), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> Any:
        _ = dialect
        if value is None:
            return None
        return from_jsonable(cast(object, json.loads(value)))


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "pk": "pk_%(table_name)s",
    }
)

workspace_record_table = Table(
    "workspace_record",
    metadata,
    Column("entity_id", String(128), primary_key=True),
    Column("table_ref", String(128), nullable=False, index=True),
    Column("fields", EncodedValue, nullable=False),
)

sync_baseline_table = Table(
    "sync_baseline",
    metadata,
    Column("entity_id", String(128), primary_key=True),
    Column("table_ref", String(128), nullable=False, index=True),
    Column("local_fields", EncodedValue, nullable=False),
    Column("remote_fields", EncodedValue, nullable=False),
    Column("remote_checksum", String(32), nullable=False),
    Column("reconciled_at", UTCDateTime, nullable=False),
)

activity_record_table = Table(
    "activity_record",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("action", String(16), nullable=False),
    Column("entity_type", String(64), nullable=False),
    Column("entity_id", String(128), nullable=False),
    Column("field", String(128), nullable=True),
    Column("table_ref", String(128), nullable=True),
    Column("before", EncodedValue, nullable=True),
    Column("after", EncodedValue, nullable=True),
    Column("checksum_before", String(32), nullable=False),
    Column("checksum_after", String(32), nullable=False),
    Column("agent", EncodedValue, nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("record_metadata", EncodedValue, nullable=False),
    Column("resolution", EncodedValue, nullable=True),
    Index("ix_activity_record_entity_created", "entity_id", "created_at"),
)


def create_all_tables(engine: Engine) -> None:
    metadata.create_all(engine)
    log.debug(f"Ensured syncledger tables on {engine.url!r}")


def create_sqlite_engine(uri: str, *, echo: bool = False) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across sessions."""

    if uri.startswith("sqlite") and ":memory:" in uri:
        return create_engine(
            uri,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(uri, echo=echo)
