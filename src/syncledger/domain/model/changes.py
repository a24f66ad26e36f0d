"""Change records: immutable observations of entity and field mutations.

Records form a closed set of variants discriminated by ``action``. All of them
share the same fields; ``SyncChange`` additionally carries the resolution that
produced it so sync decisions stay auditable.
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from .context import SYSTEM_AGENT, Agent
from .enums import (
    ChangeAction,
    ConflictOutcome,
    ConflictStrategy,
    RemoteWriteMode,
    SyncDirection,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

CHANGE_ID_PREFIX = "chg_"

_id_lock = threading.Lock()
_id_counter = itertools.count()
_last_ns = 0


def new_change_id() -> str:
    """Return a unique id that sorts in creation order within this process."""

    global _last_ns  # noqa: PLW0603
    with _id_lock:
        now = max(time.time_ns(), _last_ns + 1)
        _last_ns = now
        sequence = next(_id_counter) & 0xFFFF
    return f"{CHANGE_ID_PREFIX}{now:016x}{sequence:04x}"


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncResolution:
    """Resolution metadata attached to records produced by a sync pass."""

    session_id: str
    direction: SyncDirection
    outcome: ConflictOutcome | None = None
    strategy: ConflictStrategy | None = None
    target: Literal["local", "remote"] | None = None
    remote_write: RemoteWriteMode | None = None
    information_loss: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class _ChangeBase:
    entity_type: str
    entity_id: str
    field: str | None = None
    before: object = None
    after: object = None
    checksum_before: str
    checksum_after: str
    agent: Agent = SYSTEM_AGENT
    created_at: datetime = dataclass_field(default_factory=lambda: datetime.now(tz=UTC))
    table_ref: str | None = None
    metadata: Mapping[str, object] = dataclass_field(default_factory=dict["str", "object"])
    id: str = dataclass_field(default_factory=new_change_id)

    @property
    def is_field_change(self) -> bool:
        return self.field is not None


@dataclass(frozen=True, slots=True, kw_only=True)
class CreateChange(_ChangeBase):
    action: Literal[ChangeAction.CREATE] = ChangeAction.CREATE


@dataclass(frozen=True, slots=True, kw_only=True)
class UpdateChange(_ChangeBase):
    action: Literal[ChangeAction.UPDATE] = ChangeAction.UPDATE


@dataclass(frozen=True, slots=True, kw_only=True)
class DeleteChange(_ChangeBase):
    action: Literal[ChangeAction.DELETE] = ChangeAction.DELETE


@dataclass(frozen=True, slots=True, kw_only=True)
class RewindChange(_ChangeBase):
    action: Literal[ChangeAction.REWIND] = ChangeAction.REWIND

    @property
    def target_timestamp(self) -> str | None:
        value = self.metadata.get("target_timestamp")
        return value if isinstance(value, str) else None


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncChange(_ChangeBase):
    resolution: SyncResolution
    action: Literal[ChangeAction.SYNC] = ChangeAction.SYNC


type ChangeRecord = CreateChange | UpdateChange | DeleteChange | RewindChange | SyncChange

_VARIANTS: dict[ChangeAction, type[CreateChange | UpdateChange | DeleteChange | RewindChange]] = {
    ChangeAction.CREATE: CreateChange,
    ChangeAction.UPDATE: UpdateChange,
    ChangeAction.DELETE: DeleteChange,
    ChangeAction.REWIND: RewindChange,
}


def build_change(
    action: ChangeAction,
    *,
    resolution: SyncResolution | None = None,
    **values: object,
) -> ChangeRecord:
    """Construct the variant matching ``action``."""

    if action is ChangeAction.SYNC:
        if resolution is None:
            raise ValueError("Sync change records require a resolution")
        return SyncChange(resolution=resolution, **values)  # type: ignore[arg-type]
    return _VARIANTS[action](**values)  # type: ignore[arg-type]
