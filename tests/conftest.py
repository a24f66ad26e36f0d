from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from syncledger.adapters.sqlalchemy import create_all_tables, create_sqlite_engine
from syncledger.domain.rewind import RewindEngine
from syncledger.domain.sync import SyncOrchestrator
from syncledger.domain.tracking import ChangeTracker
from tests.support.ledger import (
    FakeClock,
    InMemoryActivityLog,
    InMemoryRemoteStore,
    InMemoryWorkspace,
    StaticIdentity,
)

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity() -> StaticIdentity:
    return StaticIdentity()


@pytest.fixture
def activity_log() -> InMemoryActivityLog:
    return InMemoryActivityLog()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def workspace() -> InMemoryWorkspace:
    return InMemoryWorkspace()


@pytest.fixture
def tracker(
    activity_log: InMemoryActivityLog, identity: StaticIdentity, clock: FakeClock
) -> ChangeTracker:
    return ChangeTracker(activity_log, identity=identity, clock=clock)


@pytest.fixture
def orchestrator(
    remote: InMemoryRemoteStore,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    identity: StaticIdentity,
    clock: FakeClock,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        remote=remote, workspace=workspace, tracker=tracker, identity=identity, clock=clock
    )


@pytest.fixture
def rewind_engine(
    activity_log: InMemoryActivityLog,
    workspace: InMemoryWorkspace,
    tracker: ChangeTracker,
    clock: FakeClock,
) -> RewindEngine:
    return RewindEngine(
        activity_log=activity_log, workspace=workspace, tracker=tracker, clock=clock
    )


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_sqlite_engine("sqlite+pysqlite:///:memory:")
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()
