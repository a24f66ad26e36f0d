"""Application configuration helpers."""

from __future__ import annotations

from .airtable import AirtableConfig, get_airtable_config
from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .identity import IdentityConfig
from .logging import configure_logging
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import MIN_SYNC_INTERVAL_SECONDS, SyncConfig, get_sync_config
from .xano import XanoConfig, get_xano_config

__all__ = [
    "MIN_SYNC_INTERVAL_SECONDS",
    "AirtableConfig",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "IdentityConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "XanoConfig",
    "configure_logging",
    "get_airtable_config",
    "get_database_config",
    "get_storage_config",
    "get_sync_config",
    "get_xano_config",
    "require_env_vars",
]
