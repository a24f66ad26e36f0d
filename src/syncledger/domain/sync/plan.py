"""Per-entity reconciliation plans computed before anything is written."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from syncledger.domain.model import Side

if TYPE_CHECKING:
    from syncledger.domain.model import Conflict

type Operation = Literal["create", "update", "delete", "rekey"]


@dataclass(slots=True, kw_only=True)
class PlannedWrite:
    """One change a pass will make on ``side``; ``field`` is ``None`` for whole records."""

    side: Side
    field: str | None
    before: object
    after: object
    operation: Operation = "update"
    conflict: Conflict | None = None


@dataclass(slots=True, kw_only=True)
class EntityPlan:
    table_ref: str
    entity_id: str
    remote_id: str | None
    generation: int
    local_before: dict[str, object] | None
    remote_before: dict[str, object] | None
    local_after: dict[str, object] | None
    remote_after: dict[str, object] | None
    baseline_local: dict[str, object] | None = None
    writes: list[PlannedWrite] = field(default_factory=list[PlannedWrite])
    conflicts: list[Conflict] = field(default_factory=list["Conflict"])
    blocked: bool = False
    drop_baseline: bool = False

    @property
    def touches_remote(self) -> bool:
        return any(write.side is Side.REMOTE for write in self.writes)

    @property
    def touches_local(self) -> bool:
        return any(write.side is Side.LOCAL for write in self.writes)
