"""Event-sourced rewind over the activity log."""

from __future__ import annotations

from .engine import RewindEngine, RewindPreview, RewindResult, RewindState
from .replay import ReplayState, fold, snapshot_at

__all__ = [
    "ReplayState",
    "RewindEngine",
    "RewindPreview",
    "RewindResult",
    "RewindState",
    "fold",
    "snapshot_at",
]
