"""Summaries of completed sync passes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from syncledger.domain.model import Conflict, SyncDirection


@dataclass(slots=True)
class SideCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.deleted


@dataclass(slots=True, kw_only=True)
class SyncReport:
    session_id: str
    direction: SyncDirection
    started_at: datetime
    finished_at: datetime | None = None
    examined: int = 0
    skipped: int = 0
    local: SideCounts = field(default_factory=SideCounts)
    remote: SideCounts = field(default_factory=SideCounts)
    conflicts: list[Conflict] = field(default_factory=list["Conflict"])
    records_logged: int = 0
    reconciled: list[str] = field(default_factory=list[str])

    @property
    def superposed(self) -> int:
        return sum(1 for conflict in self.conflicts if conflict.outcome == "superposed")

    @property
    def changed(self) -> bool:
        return bool(self.local.total or self.remote.total or self.records_logged)

    def summary(self) -> str:
        return (
            f"examined={self.examined} skipped={self.skipped} "
            f"local(+{self.local.created} ~{self.local.updated} -{self.local.deleted}) "
            f"remote(+{self.remote.created} ~{self.remote.updated} -{self.remote.deleted}) "
            f"conflicts={len(self.conflicts)} superposed={self.superposed} "
            f"logged={self.records_logged}"
        )
