"""Conflict decision records produced while reconciling one field."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from .enums import ConflictOutcome, ConflictStrategy, RemoteWriteMode, Side

if TYPE_CHECKING:
    from .context import ContextualValue, SuperposedValue


@dataclass(frozen=True, slots=True, kw_only=True)
class _ConflictBase:
    entity_id: str
    field: str
    local: ContextualValue
    remote: ContextualValue
    strategy: ConflictStrategy
    reason: str


@dataclass(frozen=True, slots=True, kw_only=True)
class NoConflict(_ConflictBase):
    """Both sides hold the same value (checksum-equal)."""

    outcome: Literal[ConflictOutcome.NOT_A_CONFLICT] = ConflictOutcome.NOT_A_CONFLICT

    @property
    def value(self) -> object:
        return self.remote.value


@dataclass(frozen=True, slots=True, kw_only=True)
class OverrideConflict(_ConflictBase):
    """One side supersedes the other."""

    winner: Side
    outcome: Literal[ConflictOutcome.OVERRIDE] = ConflictOutcome.OVERRIDE

    @property
    def value(self) -> object:
        return self.local.value if self.winner is Side.LOCAL else self.remote.value

    @property
    def loser(self) -> Side:
        return Side.REMOTE if self.winner is Side.LOCAL else Side.LOCAL


@dataclass(frozen=True, slots=True, kw_only=True)
class SuperposedConflict(_ConflictBase):
    """Both values are retained in a multi-valued cell.

    ``remote_write`` records what the remote store receives, since it cannot
    hold a superposed cell: the dominant value (``information_loss`` is then
    true) or nothing at all.
    """

    cell: SuperposedValue
    dominant: Side
    remote_write: RemoteWriteMode = RemoteWriteMode.DOMINANT
    outcome: Literal[ConflictOutcome.SUPERPOSED] = ConflictOutcome.SUPERPOSED

    @property
    def value(self) -> SuperposedValue:
        return self.cell

    @property
    def remote_value(self) -> object:
        return self.cell.dominant_value

    @property
    def information_loss(self) -> bool:
        return self.remote_write is RemoteWriteMode.DOMINANT


type Conflict = NoConflict | OverrideConflict | SuperposedConflict
