"""Local change tracking."""

from __future__ import annotations

from .change_tracker import ChangeTracker, FlushOutcome, TrackerStats

__all__ = ["ChangeTracker", "FlushOutcome", "TrackerStats"]
