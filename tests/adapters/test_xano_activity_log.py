from __future__ import annotations

import asyncio
import json
from collections.abc import Callable  # noqa: TC003
from dataclasses import replace
from datetime import timedelta

import httpx
import pytest

from syncledger.adapters.http_resilience import ResilienceConfig, ResilientClient
from syncledger.adapters.xano import XanoActivityLog
from syncledger.config.http_resilience import NO_RETRY
from syncledger.config.xano import XanoConfig
from syncledger.domain.checksum import checksum
from syncledger.domain.model import (
    Agent,
    ChangeAction,
    ChangeRecord,
    ConflictOutcome,
    ConflictStrategy,
    Side,
    SyncChange,
    SyncDirection,
    SyncResolution,
    build_change,
)
from syncledger.domain.ports import (
    ActivityLogRejectedError,
    ActivityLogUnavailableError,
    ActivityQuery,
)
from tests.support.ledger import T0, TABLE

type Handler = Callable[[httpx.Request], httpx.Response]


class _FakeXano:
    """Stores activity rows and serves them back with offset/limit paging."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, object]] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "PUT":
            row = json.loads(request.content)
            self.rows[row["activity_id"]] = row
            return httpx.Response(200, json=row)
        params = request.url.params
        rows = [
            row
            for row in self.rows.values()
            if "entity_id" not in params or row["entity_id"] == params["entity_id"]
        ]
        offset = int(params.get("offset", "0"))
        limit = int(params.get("limit", "100"))
        return httpx.Response(200, json=rows[offset : offset + limit])


def _log(
    handler: Handler, *, auth_token: str | None = "tok", page_size: int = 100
) -> XanoActivityLog:
    def factory(resilience: ResilienceConfig) -> ResilientClient:
        return ResilientClient(
            replace(resilience, retry=NO_RETRY), transport=httpx.MockTransport(handler)
        )

    config = XanoConfig(base_url="https://x.example/api:v1", auth_token=auth_token)
    return XanoActivityLog(config=config, client_factory=factory, page_size=page_size)


def _change(entity_id: str, seconds: int, after: object = "Alicia") -> ChangeRecord:
    return build_change(
        ChangeAction.UPDATE,
        entity_type="record",
        entity_id=entity_id,
        field="name",
        before="Alice",
        after=after,
        checksum_before=checksum("Alice"),
        checksum_after=checksum(after),
        agent=Agent(id="u-1", name="Ada", email="ada@example.com"),
        created_at=T0 + timedelta(seconds=seconds),
        table_ref=TABLE,
        metadata={"origin": "cli"},
    )


def test_appended_records_read_back_across_pages() -> None:
    server = _FakeXano()
    activity_log = _log(server, page_size=2)
    records = [_change("rec_1", 2), _change("rec_1", 0), _change("rec_1", 1), _change("rec_2", 3)]

    async def scenario() -> list[ChangeRecord]:
        for record in records:
            await activity_log.append(record)
        return await activity_log.query(ActivityQuery(entity_id="rec_1"))

    fetched = asyncio.run(scenario())

    assert [record.created_at for record in fetched] == sorted(r.created_at for r in records[:3])
    assert {record.id for record in fetched} == {record.id for record in records[:3]}
    reads = [request for request in server.requests if request.method == "GET"]
    assert [request.url.params["offset"] for request in reads] == ["0", "2"]
    assert all(request.headers["Authorization"] == "Bearer tok" for request in server.requests)


def test_sync_resolution_survives_the_round_trip() -> None:
    server = _FakeXano()
    activity_log = _log(server, auth_token=None)
    record = build_change(
        ChangeAction.SYNC,
        resolution=SyncResolution(
            session_id="sync_1",
            direction=SyncDirection.BIDIRECTIONAL,
            outcome=ConflictOutcome.OVERRIDE,
            strategy=ConflictStrategy.SUPERPOSITION,
            target=Side.LOCAL.value,
        ),
        entity_type="record",
        entity_id="rec_1",
        field="status",
        before="open",
        after="closed",
        checksum_before=checksum("open"),
        checksum_after=checksum("closed"),
        created_at=T0,
    )

    async def scenario() -> list[ChangeRecord]:
        await activity_log.append(record)
        return await activity_log.query(ActivityQuery(limit=10))

    (fetched,) = asyncio.run(scenario())

    assert isinstance(fetched, SyncChange)
    assert fetched.resolution == record.resolution
    assert "Authorization" not in server.requests[0].headers
    assert server.requests[-1].url.params["limit"] == "10"


def test_query_forwards_filters() -> None:
    server = _FakeXano()

    asyncio.run(
        _log(server).query(
            ActivityQuery(
                entity_id="rec_1",
                start_time=T0,
                end_time=T0 + timedelta(hours=1),
                action=ChangeAction.REWIND,
                limit=5,
                offset=10,
            )
        )
    )

    params = server.requests[0].url.params
    assert params["entity_id"] == "rec_1"
    assert params["start_date"].startswith("2024-05-01T09:00:00")
    assert params["end_date"].startswith("2024-05-01T10:00:00")
    assert params["action"] == "rewind"
    assert (params["offset"], params["limit"]) == ("10", "5")


def test_snapshot_returns_latest_row_or_none() -> None:
    record = _change("rec_1", 0)
    server = _FakeXano()
    asyncio.run(_log(server).append(record))
    row = server.rows[record.id]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["entity_id"] == "rec_1":
            return httpx.Response(200, json=row)
        return httpx.Response(200, content=b"")

    activity_log = _log(handler)

    assert asyncio.run(activity_log.get_snapshot("rec_1", T0)) == record
    assert asyncio.run(activity_log.get_snapshot("ghost", T0)) is None


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (429, ActivityLogUnavailableError),
        (502, ActivityLogUnavailableError),
        (400, ActivityLogRejectedError),
        (403, ActivityLogRejectedError),
    ],
)
def test_error_statuses_map_to_activity_log_errors(
    status: int, error: type[Exception]
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope", "code": "ERROR"})

    with pytest.raises(error, match="nope"):
        asyncio.run(_log(handler).append(_change("rec_1", 0)))


def test_malformed_history_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"activity_id": "chg_1"}])

    with pytest.raises(ActivityLogRejectedError) as exc_info:
        asyncio.run(_log(handler).query(ActivityQuery(limit=1)))

    assert exc_info.value.reason == "activity_log_bad_payload"


def test_unreachable_xano_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ActivityLogUnavailableError):
        asyncio.run(_log(handler).get_snapshot("rec_1", T0))
