"""Retry, rate-limit and cache settings for the remote store and activity log clients."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Literal

import httpx
from httpx_retries import Retry

from .env import env_float, env_int

if TYPE_CHECKING:
    from collections.abc import Mapping

type ShouldCacheHook = Callable[[object], bool]

# Idempotent calls only; POST creates records and must not be replayed blindly.
RETRYABLE_METHODS = frozenset({"DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "PUT"})
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = 4
    backoff_factor: float = 0.5
    max_backoff_wait: float = 60.0
    respect_retry_after_header: bool = True
    allowed_methods: frozenset[str] = RETRYABLE_METHODS
    status_forcelist: frozenset[int] = RETRYABLE_STATUSES
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0

    @classmethod
    def from_environment(cls, prefix: str) -> RetryPolicy:
        """Read ``<PREFIX>_MAX_RETRIES`` and ``<PREFIX>_RETRY_BACKOFF`` over the defaults."""

        defaults = cls()
        return cls(
            total=env_int(f"{prefix}_MAX_RETRIES", defaults.total),
            backoff_factor=env_float(f"{prefix}_RETRY_BACKOFF", defaults.backoff_factor),
        )

    def build(self) -> Retry:
        return Retry(
            total=self.total,
            backoff_factor=self.backoff_factor,
            max_backoff_wait=self.max_backoff_wait,
            respect_retry_after_header=self.respect_retry_after_header,
            allowed_methods=tuple(self.allowed_methods),
            status_forcelist=tuple(self.status_forcelist),
            retry_on_exceptions=self.retry_on_exceptions,
            backoff_jitter=self.backoff_jitter,
        )


NO_RETRY = RetryPolicy(total=0)


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache; ``should_cache`` sees the decoded JSON body."""

    enabled: bool = True
    backend: Literal["sqlite", "memory"] = "memory"
    sqlite_path: str | None = None
    default_ttl_seconds: float | None = None
    refresh_ttl_on_access: bool = True
    should_cache: ShouldCacheHook | None = None


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    default_headers: Mapping[str, str] | None = None

    def with_bearer_token(self, token: str) -> ResilienceConfig:
        headers = {**(self.default_headers or {}), "Authorization": f"Bearer {token}"}
        return replace(self, default_headers=headers)
