"""Domain model for change records, contexts, conflicts and snapshots."""

from __future__ import annotations

from .changes import (
    ChangeRecord,
    CreateChange,
    DeleteChange,
    RewindChange,
    SyncChange,
    SyncResolution,
    UpdateChange,
    build_change,
    new_change_id,
)
from .conflicts import Conflict, NoConflict, OverrideConflict, SuperposedConflict
from .context import (
    SYSTEM_AGENT,
    Agent,
    ContextFilter,
    ContextualValue,
    SuperposedValue,
    Timeframe,
    ValueContext,
    plain_value,
    unknown_context,
)
from .enums import (
    AgentKind,
    ChangeAction,
    ChangeType,
    ConflictOutcome,
    ConflictStrategy,
    RemoteWriteMode,
    RewindPhase,
    Scale,
    Side,
    SyncDirection,
    SyncStep,
    ValueMethod,
)
from .snapshot import Snapshot, StateComparison, TimelineEntry

__all__ = [
    "SYSTEM_AGENT",
    "Agent",
    "AgentKind",
    "ChangeAction",
    "ChangeRecord",
    "ChangeType",
    "Conflict",
    "ConflictOutcome",
    "ConflictStrategy",
    "ContextFilter",
    "ContextualValue",
    "CreateChange",
    "DeleteChange",
    "NoConflict",
    "OverrideConflict",
    "RemoteWriteMode",
    "RewindChange",
    "RewindPhase",
    "Scale",
    "Side",
    "Snapshot",
    "StateComparison",
    "SuperposedConflict",
    "SuperposedValue",
    "SyncChange",
    "SyncDirection",
    "SyncResolution",
    "SyncStep",
    "Timeframe",
    "TimelineEntry",
    "UpdateChange",
    "ValueContext",
    "ValueMethod",
    "build_change",
    "new_change_id",
    "plain_value",
    "unknown_context",
]
