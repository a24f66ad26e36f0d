"""Typed publish/subscribe channels.

Each channel carries one event type. Handlers run in subscription order; a
failing handler does not stop the others, and all failures are re-raised
together to the publisher as an ``ExceptionGroup``.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from syncledger.domain.errors import SyncFailure
    from syncledger.domain.model import ChangeRecord, Conflict, Snapshot
    from syncledger.domain.sync.report import SyncReport

log = getLogger(__name__)

type Handler[T] = Callable[[T], None]


class EventChannel[T]:
    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[T]] = []

    def subscribe(self, handler: Handler[T]) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""

        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: T) -> None:
        errors: list[Exception] = []
        for handler in tuple(self._handlers):
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001
                log.error(f"Handler {handler!r} failed on {self.name} event")
                errors.append(exc)
        if errors:
            raise ExceptionGroup(f"{len(errors)} {self.name} handler(s) failed", errors)

    def __len__(self) -> int:
        return len(self._handlers)


# Change tracker events -------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DirtyStateChanged:
    entity_id: str
    dirty_count: int


@dataclass(frozen=True, slots=True)
class ChangeTrackerEvents:
    change: EventChannel[ChangeRecord]
    dirty: EventChannel[DirtyStateChanged]
    clean: EventChannel[DirtyStateChanged]
    undo: EventChannel[ChangeRecord]
    redo: EventChannel[ChangeRecord]
    delivered: EventChannel[tuple[ChangeRecord, ...]]

    @classmethod
    def create(cls) -> ChangeTrackerEvents:
        return cls(
            change=EventChannel("change"),
            dirty=EventChannel("dirty"),
            clean=EventChannel("clean"),
            undo=EventChannel("undo"),
            redo=EventChannel("redo"),
            delivered=EventChannel("delivered"),
        )


# Sync events -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SyncStarted:
    session_id: str


@dataclass(frozen=True, slots=True)
class SyncEvents:
    started: EventChannel[SyncStarted]
    completed: EventChannel[SyncReport]
    failed: EventChannel[SyncFailure]
    conflict: EventChannel[Conflict]

    @classmethod
    def create(cls) -> SyncEvents:
        return cls(
            started=EventChannel("sync_started"),
            completed=EventChannel("sync_completed"),
            failed=EventChannel("sync_failed"),
            conflict=EventChannel("conflict"),
        )


# Rewind events -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RewindEvent:
    entity_id: str
    target: Snapshot | None = None
    error: Exception | None = None


@dataclass(frozen=True, slots=True)
class RewindEvents:
    started: EventChannel[RewindEvent]
    completed: EventChannel[RewindEvent]
    cancelled: EventChannel[RewindEvent]
    preview_ready: EventChannel[Snapshot]

    @classmethod
    def create(cls) -> RewindEvents:
        return cls(
            started=EventChannel("rewind_started"),
            completed=EventChannel("rewind_completed"),
            cancelled=EventChannel("rewind_cancelled"),
            preview_ready=EventChannel("preview_ready"),
        )
