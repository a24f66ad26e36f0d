"""SQLAlchemy persistence for the local workspace and the activity log."""

from __future__ import annotations

from .activity_log import SqlAlchemyActivityLog
from .mappings import (
    activity_record_table,
    create_all_tables,
    create_sqlite_engine,
    metadata,
    sync_baseline_table,
    workspace_record_table,
)
from .workspace import SqlAlchemyWorkspace

__all__ = [
    "SqlAlchemyActivityLog",
    "SqlAlchemyWorkspace",
    "activity_record_table",
    "create_all_tables",
    "create_sqlite_engine",
    "metadata",
    "sync_baseline_table",
    "workspace_record_table",
]
