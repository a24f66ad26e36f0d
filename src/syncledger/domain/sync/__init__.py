"""Sync passes between the local workspace and the remote store."""

from __future__ import annotations

from .orchestrator import (
    LOCAL_CONTEXT,
    REMOTE_CONTEXT,
    ContextDefaults,
    SyncOrchestrator,
)
from .report import SideCounts, SyncReport
from .scheduler import AutoSyncScheduler

__all__ = [
    "LOCAL_CONTEXT",
    "REMOTE_CONTEXT",
    "AutoSyncScheduler",
    "ContextDefaults",
    "SideCounts",
    "SyncOrchestrator",
    "SyncReport",
]
