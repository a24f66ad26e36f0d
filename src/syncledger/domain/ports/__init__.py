"""Domain port definitions for adapters."""

from __future__ import annotations

from .activity_log import (
    ActivityLog,
    ActivityLogRejectedError,
    ActivityLogUnavailableError,
    ActivityQuery,
)
from .identity import IdentityProvider, resolve_agent
from .remote_store import (
    FieldDefinition,
    RemotePermanentError,
    RemoteRateLimitedError,
    RemoteRecord,
    RemoteStore,
    RemoteStoreError,
    RemoteUnavailableError,
    TableDefinition,
)
from .workspace import Baseline, LocalRecord, LocalWorkspace

__all__ = [
    "ActivityLog",
    "ActivityLogRejectedError",
    "ActivityLogUnavailableError",
    "ActivityQuery",
    "Baseline",
    "FieldDefinition",
    "IdentityProvider",
    "LocalRecord",
    "LocalWorkspace",
    "RemotePermanentError",
    "RemoteRateLimitedError",
    "RemoteRecord",
    "RemoteStore",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "TableDefinition",
    "resolve_agent",
]
