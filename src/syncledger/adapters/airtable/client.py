"""Airtable-backed remote store."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, Final

import httpx

from syncledger.adapters.http_resilience import ResilienceConfig, ResilientClient
from syncledger.config.airtable import AirtableConfig
from syncledger.domain.ports import (
    RemotePermanentError,
    RemoteRateLimitedError,
    RemoteRecord,
    RemoteStore,
    RemoteUnavailableError,
)

from .schema import ErrorResponse, RecordPayload, RecordsPage, TablesResponse
from .translator import to_fields_payload, to_remote_record, to_table_definition

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from syncledger.domain.codec import JsonValue
    from syncledger.domain.ports import TableDefinition

log = getLogger(__name__)

MAX_PAGE_SIZE: Final[int] = 100


def _is_schema_payload(payload: object) -> bool:
    """Only schema listings are cached; record pages and write acks never are."""

    return isinstance(payload, dict) and "tables" in payload


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class AirtableRemoteStore:
    config: AirtableConfig = field(default_factory=AirtableConfig.from_environment)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    page_size: int = MAX_PAGE_SIZE
    modified_field: str | None = None
    typecast: bool = False
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"Airtable page size must be between 1 and {MAX_PAGE_SIZE}")

    async def __aenter__(self) -> AirtableRemoteStore:
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

    async def fetch_schema(self) -> list[TableDefinition]:
        payload = await self._request("GET", f"meta/bases/{self.config.base_id}/tables")
        tables = TablesResponse.model_validate(payload).tables
        log.debug(f"Airtable base {self.config.base_id} lists {len(tables)} table(s)")
        return [to_table_definition(table) for table in tables]

    async def fetch_records(self, table_ref: str) -> list[RemoteRecord]:
        records: list[RemoteRecord] = []
        offset: str | None = None
        while True:
            params: dict[str, str | int] = {"pageSize": self.page_size}
            if offset is not None:
                params["offset"] = offset
            payload = await self._request("GET", self._table_path(table_ref), params=params)
            page = RecordsPage.model_validate(payload)
            records.extend(
                to_remote_record(record, modified_field=self.modified_field)
                for record in page.records
            )
            if page.offset is None:
                break
            offset = page.offset
        log.info(f"Fetched {len(records)} record(s) from Airtable table {table_ref}")
        return records

    async def write_record(self, table_ref: str, record: RemoteRecord) -> RemoteRecord:
        body: dict[str, JsonValue] = {"fields": to_fields_payload(record.fields)}
        if self.typecast:
            body["typecast"] = True
        if record.id is None:
            payload = await self._request("POST", self._table_path(table_ref), json=body)
        else:
            payload = await self._request(
                "PATCH", f"{self._table_path(table_ref)}/{record.id}", json=body
            )
        stored = RecordPayload.model_validate(payload)
        return to_remote_record(stored, modified_field=self.modified_field)

    async def delete_record(self, table_ref: str, record_id: str) -> None:
        await self._request("DELETE", f"{self._table_path(table_ref)}/{record_id}")

    def _table_path(self, table_ref: str) -> str:
        return f"{self.config.base_id}/{table_ref}"

    def _resilience(self) -> ResilienceConfig:
        resilience = self.config.resilience.with_bearer_token(self.config.api_key)
        cache = resilience.cache
        if cache is not None and cache.should_cache is None:
            cache = replace(cache, should_cache=_is_schema_payload)
        return replace(resilience, cache=cache)

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
        json: dict[str, JsonValue] | None = None,
    ) -> object:
        client = self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            raise RemoteUnavailableError(f"Airtable unreachable: {exc}") from exc
        _raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise RemotePermanentError(
                "Airtable returned a non-JSON response", reason="remote_bad_payload"
            ) from exc


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = _error_message(response)
    log.error(f"Airtable API error {status}: {message}")
    if status == httpx.codes.TOO_MANY_REQUESTS:
        raise RemoteRateLimitedError(f"Airtable rate limit exceeded: {message}")
    if status >= 500:
        raise RemoteUnavailableError(f"Airtable unavailable ({status}): {message}")
    if status in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}:
        raise RemotePermanentError(
            f"Airtable rejected the credentials: {message}", reason="remote_unauthorized"
        )
    if status == httpx.codes.NOT_FOUND:
        raise RemotePermanentError(
            f"Airtable resource not found: {message}", reason="remote_not_found"
        )
    raise RemotePermanentError(f"Airtable rejected the request ({status}): {message}")


def _error_message(response: httpx.Response) -> str:
    try:
        return ErrorResponse.model_validate(response.json()).message
    except ValueError:
        return response.reason_phrase or "unknown error"


if TYPE_CHECKING:
    _store_check: RemoteStore = AirtableRemoteStore()
