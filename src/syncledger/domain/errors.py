"""Error taxonomy shared by the core and its adapters.

Every error carries a stable ``reason`` string and a category so callers can
decide between fixing their input, retrying later, or escalating.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Sequence

    from syncledger.domain.model import SyncStep


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONSISTENCY = "consistency"
    BUSY = "busy"


class SyncLedgerError(RuntimeError):
    """Base class for failures surfaced by syncledger."""

    category: ClassVar[ErrorCategory] = ErrorCategory.PERMANENT

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ValidationError(SyncLedgerError):
    """Malformed input; the caller must fix it before retrying."""

    category = ErrorCategory.VALIDATION


class TransientIOError(SyncLedgerError):
    """A collaborator is temporarily unreachable; retrying later may succeed."""

    category = ErrorCategory.TRANSIENT


class PermanentIOError(SyncLedgerError):
    """A collaborator rejected the request in a way retries will not fix."""

    category = ErrorCategory.PERMANENT


class ConsistencyError(SyncLedgerError):
    """Applying changes stopped part way; both sides may now differ."""

    category = ErrorCategory.CONSISTENCY

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        applied: Sequence[str] = (),
        failed: Sequence[str] = (),
    ) -> None:
        super().__init__(message, reason=reason)
        self.applied = tuple(applied)
        self.failed = tuple(failed)


class BusyError(SyncLedgerError):
    """A single-flight operation is already running."""

    category = ErrorCategory.BUSY


class SyncBusyError(BusyError):
    def __init__(self) -> None:
        super().__init__("A sync pass is already in progress", reason="sync_in_progress")


class RewindBusyError(BusyError):
    def __init__(self, entity_id: str | None = None) -> None:
        message = "A rewind is already in progress"
        if entity_id is not None:
            message = f"{message} for {entity_id}"
        super().__init__(message, reason="rewind_in_progress")


class SyncFailure(SyncLedgerError):
    """A sync pass aborted; dirty flags were left untouched."""

    def __init__(
        self,
        message: str,
        *,
        step: SyncStep,
        reason: str,
        category: ErrorCategory,
        entity_ids: Sequence[str] = (),
    ) -> None:
        super().__init__(message, reason=reason)
        self.step = step
        self.failure_category = category
        self.entity_ids = tuple(entity_ids)

    @classmethod
    def from_error(
        cls,
        error: Exception,
        *,
        step: SyncStep,
        entity_ids: Sequence[str] = (),
    ) -> SyncFailure:
        if isinstance(error, SyncLedgerError):
            reason, category = error.reason, error.category
            if isinstance(error, ConsistencyError):
                entity_ids = (*error.applied, *error.failed) or entity_ids
        else:
            reason, category = "unexpected_error", ErrorCategory.PERMANENT
        failure = cls(
            f"Sync failed while {step.value}: {error}",
            step=step,
            reason=reason,
            category=category,
            entity_ids=entity_ids,
        )
        failure.__cause__ = error
        return failure

    @property
    def retryable(self) -> bool:
        return self.failure_category in {ErrorCategory.TRANSIENT, ErrorCategory.CONSISTENCY}
