"""Port for the local workspace and its reconciliation baselines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime


@dataclass(slots=True)
class LocalRecord:
    entity_id: str
    table_ref: str
    fields: dict[str, object] = field(default_factory=dict["str", "object"])


@dataclass(frozen=True, slots=True, kw_only=True)
class Baseline:
    """Both sides' field values as of the last completed reconciliation."""

    entity_id: str
    table_ref: str
    local_fields: dict[str, object]
    remote_fields: dict[str, object]
    remote_checksum: str
    reconciled_at: datetime


@runtime_checkable
class LocalWorkspace(Protocol):
    """Local side of a reconciliation. Calls never suspend."""

    def list_records(self, table_ref: str) -> Sequence[LocalRecord]: ...

    def get_record(self, entity_id: str) -> LocalRecord | None: ...

    def put_record(self, table_ref: str, entity_id: str, fields: Mapping[str, object]) -> None: ...

    def delete_record(self, entity_id: str) -> None: ...

    def list_baselines(self, table_ref: str) -> Sequence[Baseline]: ...

    def get_baseline(self, entity_id: str) -> Baseline | None: ...

    def save_baseline(self, baseline: Baseline) -> None: ...

    def drop_baseline(self, entity_id: str) -> None: ...
