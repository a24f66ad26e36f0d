"""Xano-backed activity log."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final

import httpx
from pydantic import ValidationError as PydanticValidationError

from syncledger.adapters.http_resilience import ResilienceConfig, ResilientClient
from syncledger.config.xano import XanoConfig
from syncledger.domain.codec import isoformat
from syncledger.domain.ports import (
    ActivityLog,
    ActivityLogRejectedError,
    ActivityLogUnavailableError,
    ActivityQuery,
)
from syncledger.domain.rewind.replay import ordered

from .schema import ErrorResponse, HistoryResponse, SnapshotResponse
from .translator import from_activity_payload, to_activity_payload

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from types import TracebackType

    from syncledger.domain.model import ChangeRecord

log = getLogger(__name__)

PAGE_SIZE: Final[int] = 100


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class XanoActivityLog:
    """Activity log persisted through a Xano REST API.

    Appends use ``PUT`` keyed by the record id, so a retried append
    overwrites the row it already created instead of duplicating it.
    """

    config: XanoConfig = field(default_factory=XanoConfig.from_environment)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    page_size: int = PAGE_SIZE
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> XanoActivityLog:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def append(self, record: ChangeRecord) -> None:
        payload = to_activity_payload(record).model_dump(mode="json")
        await self._request("PUT", self.config.activity_endpoint, json=payload)
        log.debug(f"Appended {record.action} record {record.id} for {record.entity_id}")

    async def query(self, query: ActivityQuery) -> list[ChangeRecord]:
        if query.limit is not None:
            return ordered(await self._fetch_page(query, query.offset, query.limit))

        records: list[ChangeRecord] = []
        offset = query.offset
        while True:
            page = await self._fetch_page(query, offset, self.page_size)
            records.extend(page)
            if len(page) < self.page_size:
                break
            offset += len(page)
        return ordered(records)

    async def get_snapshot(self, entity_id: str, timestamp: datetime) -> ChangeRecord | None:
        payload = await self._request(
            "GET",
            self.config.snapshot_endpoint,
            params={"entity_id": entity_id, "timestamp": isoformat(timestamp)},
        )
        try:
            activity = SnapshotResponse.model_validate(payload).activity
        except PydanticValidationError as exc:
            raise ActivityLogRejectedError(
                f"Xano returned a malformed snapshot: {exc}", reason="activity_log_bad_payload"
            ) from exc
        return from_activity_payload(activity) if activity is not None else None

    async def _fetch_page(
        self, query: ActivityQuery, offset: int, limit: int
    ) -> list[ChangeRecord]:
        params: dict[str, str | int] = {"offset": offset, "limit": limit}
        if query.entity_id is not None:
            params["entity_id"] = query.entity_id
        if query.start_time is not None:
            params["start_date"] = isoformat(query.start_time)
        if query.end_time is not None:
            params["end_date"] = isoformat(query.end_time)
        if query.action is not None:
            params["action"] = query.action.value
        payload = await self._request("GET", self.config.activity_endpoint, params=params)
        try:
            items = HistoryResponse.model_validate(payload).items
        except PydanticValidationError as exc:
            raise ActivityLogRejectedError(
                f"Xano returned a malformed history page: {exc}",
                reason="activity_log_bad_payload",
            ) from exc
        return [from_activity_payload(item) for item in items]

    def _resilience(self) -> ResilienceConfig:
        resilience = self.config.resolved_resilience()
        if self.config.auth_token is None:
            return resilience
        return resilience.with_bearer_token(self.config.auth_token)

    def _get_client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self._resilience())
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
        json: dict[str, object] | None = None,
    ) -> object:
        client = self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            raise ActivityLogUnavailableError(f"Xano unreachable: {exc}") from exc
        _raise_for_status(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ActivityLogRejectedError(
                "Xano returned a non-JSON response", reason="activity_log_bad_payload"
            ) from exc


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = _error_message(response)
    log.error(f"Xano API error {status}: {message}")
    if status == httpx.codes.TOO_MANY_REQUESTS or status >= 500:
        raise ActivityLogUnavailableError(f"Xano unavailable ({status}): {message}")
    raise ActivityLogRejectedError(f"Xano rejected the request ({status}): {message}")


def _error_message(response: httpx.Response) -> str:
    try:
        return ErrorResponse.model_validate(response.json()).message
    except ValueError:
        return response.reason_phrase or "unknown error"


if TYPE_CHECKING:
    _log_check: ActivityLog = XanoActivityLog()
