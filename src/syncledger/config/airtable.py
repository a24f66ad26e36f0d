"""Airtable configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_list, require_env_vars
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy

AIRTABLE_BASE_URL = "https://api.airtable.com/v0/"
AIRTABLE_TIMEOUT_SECONDS = 15.0
# Airtable allows five requests per second per base.
AIRTABLE_RATE_LIMIT = RateLimit(max_calls=5, per_seconds=1.0)


def default_airtable_resilience() -> ResilienceConfig:
    return ResilienceConfig(
        name="airtable",
        base_url=AIRTABLE_BASE_URL,
        timeout_seconds=AIRTABLE_TIMEOUT_SECONDS,
        retry=RetryPolicy.from_environment("AIRTABLE"),
        ratelimit=AIRTABLE_RATE_LIMIT,
        cache=CacheConfig(backend="memory", default_ttl_seconds=300.0),
    )


@dataclass(frozen=True, slots=True)
class AirtableConfig:
    """Holds Airtable API configuration values."""

    api_key: str
    base_id: str
    tables: tuple[str, ...] = ()
    resilience: ResilienceConfig = field(default_factory=default_airtable_resilience)

    @classmethod
    def from_environment(cls) -> AirtableConfig:
        values = require_env_vars(("AIRTABLE_API_KEY", "AIRTABLE_BASE_ID"))
        return cls(
            api_key=values["AIRTABLE_API_KEY"],
            base_id=values["AIRTABLE_BASE_ID"],
            tables=env_list("AIRTABLE_TABLES"),
        )


def get_airtable_config() -> AirtableConfig:
    return AirtableConfig.from_environment()
