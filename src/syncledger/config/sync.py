"""Reconciliation defaults and their environment overrides."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import Final

from syncledger.domain.model import (
    ConflictStrategy,
    RemoteWriteMode,
    Side,
    SyncDirection,
    ValueMethod,
)
from syncledger.domain.sync.scheduler import DEFAULT_INTERVAL_SECONDS, MIN_INTERVAL_SECONDS

from .env import env_bool, env_float, env_int, env_list, optional_env_var
from .errors import ConfigurationError

log = getLogger(__name__)

MIN_SYNC_INTERVAL_SECONDS: Final[float] = MIN_INTERVAL_SECONDS
DEFAULT_SYNC_INTERVAL_SECONDS: Final[float] = DEFAULT_INTERVAL_SECONDS
DEFAULT_BATCH_SIZE: Final[int] = 50
DEFAULT_BATCH_DELAY_SECONDS: Final[float] = 2.0
DEFAULT_UNDO_CAPACITY: Final[int] = 50
DEFAULT_HISTORY_CAPACITY: Final[int] = 500
DEFAULT_PREVIEW_CACHE_CAPACITY: Final[int] = 128
DEFAULT_CONFLICT_BUFFER_CAPACITY: Final[int] = 100
DEFAULT_AUTHORITY_ORDER: Final[tuple[ValueMethod, ...]] = (
    ValueMethod.DECLARED,
    ValueMethod.MEASURED,
    ValueMethod.AGGREGATED,
)


def clamp_interval(seconds: float) -> float:
    """Raise ``seconds`` to the minimum auto-sync interval, warning when it was lower."""

    if seconds < MIN_SYNC_INTERVAL_SECONDS:
        log.warning(
            f"Sync interval {seconds}s is below the {MIN_SYNC_INTERVAL_SECONDS}s floor; "
            "using the floor instead"
        )
        return MIN_SYNC_INTERVAL_SECONDS
    return seconds


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncConfig:
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    strategy: ConflictStrategy = ConflictStrategy.SUPERPOSITION
    auto_sync: bool = False
    interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    undo_capacity: int = DEFAULT_UNDO_CAPACITY
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    preview_cache_capacity: int = DEFAULT_PREVIEW_CACHE_CAPACITY
    conflict_buffer_capacity: int = DEFAULT_CONFLICT_BUFFER_CAPACITY
    tie_break: Side = Side.REMOTE
    authority_order: tuple[ValueMethod, ...] = DEFAULT_AUTHORITY_ORDER
    superposed_remote_write: RemoteWriteMode = RemoteWriteMode.DOMINANT
    tables: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "interval_seconds", clamp_interval(self.interval_seconds))
        if self.batch_size < 1:
            raise ConfigurationError("Batch size must be at least 1")
        if self.batch_delay_seconds <= 0:
            raise ConfigurationError("Batch delay must be positive")

    @classmethod
    def from_environment(cls) -> SyncConfig:
        authority = env_list("SYNCLEDGER_AUTHORITY_ORDER")
        return cls(
            direction=_env_enum(
                "SYNCLEDGER_SYNC_DIRECTION", SyncDirection, SyncDirection.BIDIRECTIONAL
            ),
            strategy=_env_enum(
                "SYNCLEDGER_CONFLICT_STRATEGY", ConflictStrategy, ConflictStrategy.SUPERPOSITION
            ),
            auto_sync=env_bool("SYNCLEDGER_AUTO_SYNC", False),
            interval_seconds=env_float("SYNCLEDGER_SYNC_INTERVAL", DEFAULT_SYNC_INTERVAL_SECONDS),
            batch_size=env_int("SYNCLEDGER_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            batch_delay_seconds=env_float("SYNCLEDGER_BATCH_DELAY", DEFAULT_BATCH_DELAY_SECONDS),
            undo_capacity=env_int("SYNCLEDGER_UNDO_CAPACITY", DEFAULT_UNDO_CAPACITY),
            tie_break=_env_enum("SYNCLEDGER_TIE_BREAK", Side, Side.REMOTE),
            authority_order=(
                tuple(
                    _parse_enum("SYNCLEDGER_AUTHORITY_ORDER", ValueMethod, item)
                    for item in authority
                )
                or DEFAULT_AUTHORITY_ORDER
            ),
            superposed_remote_write=_env_enum(
                "SYNCLEDGER_SUPERPOSED_REMOTE_WRITE", RemoteWriteMode, RemoteWriteMode.DOMINANT
            ),
            tables=env_list("SYNCLEDGER_TABLES"),
        )


def _parse_enum[E: StrEnum](
    name: str, enum_type: type[E], raw: str
) -> E:
    try:
        return enum_type(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(f"{name} must be one of {choices}, got {raw!r}") from exc


def _env_enum[E: StrEnum](
    name: str, enum_type: type[E], default: E
) -> E:
    raw = optional_env_var(name)
    if raw is None:
        return default
    return _parse_enum(name, enum_type, raw)


def get_sync_config() -> SyncConfig:
    return SyncConfig.from_environment()
