"""Xano activity log configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import optional_env_var, require_env_var
from .errors import ConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

XANO_TIMEOUT_SECONDS = 10.0


def default_xano_resilience(base_url: str) -> ResilienceConfig:
    return ResilienceConfig(
        name="xano",
        base_url=base_url.rstrip("/") + "/",
        timeout_seconds=XANO_TIMEOUT_SECONDS,
        retry=RetryPolicy.from_environment("XANO"),
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
    )


@dataclass(frozen=True, slots=True)
class XanoConfig:
    base_url: str
    auth_token: str | None = None
    activity_endpoint: str = "activity"
    snapshot_endpoint: str = "activity/snapshot"
    resilience: ResilienceConfig | None = field(default=None)

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("XANO_BASE_URL must be an http(s) URL")

    def resolved_resilience(self) -> ResilienceConfig:
        return self.resilience or default_xano_resilience(self.base_url)

    @classmethod
    def from_environment(cls) -> XanoConfig:
        return cls(
            base_url=require_env_var("XANO_BASE_URL"),
            auth_token=optional_env_var("XANO_AUTH_TOKEN"),
        )


def get_xano_config() -> XanoConfig | None:
    """Return the Xano configuration, or ``None`` when no base URL is configured."""

    if optional_env_var("XANO_BASE_URL") is None:
        return None
    return XanoConfig.from_environment()
