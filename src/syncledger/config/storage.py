"""Where the workspace database and the HTTP cache live."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import env_bool, optional_env_var

APP_DIR_NAME: Final[str] = "syncledger"
WORKSPACE_DB_FILENAME: Final[str] = "workspace.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        return Path(base) / APP_DIR_NAME if base else Path.home() / APP_DIR_NAME
    base = os.getenv("XDG_DATA_HOME")
    base_path = Path(base) if base else Path.home() / ".local" / "share"
    return base_path / APP_DIR_NAME


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Data directory holding the SQLite workspace (baselines and, by default,
    the activity log) next to the schema cache of the remote store."""

    data_dir: Path
    workspace_filename: str = WORKSPACE_DB_FILENAME
    http_cache_filename: str = HTTP_CACHE_FILENAME

    @classmethod
    def from_environment(cls) -> StorageConfig:
        configured = optional_env_var("SYNCLEDGER_DATA_DIR")
        return cls(data_dir=Path(configured) if configured else _default_data_dir())

    def ensure_data_dir(self) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def workspace_path(self) -> Path:
        return self.ensure_data_dir() / self.workspace_filename

    def http_cache_path(self) -> Path:
        return self.ensure_data_dir() / self.http_cache_filename


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False


def get_storage_config() -> StorageConfig:
    return StorageConfig.from_environment()


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise a SQLite file in the data directory."""

    echo = env_bool("SYNCLEDGER_SQL_ECHO", False)
    uri = optional_env_var("DATABASE_URI")
    if uri is None:
        uri = f"sqlite+pysqlite:///{(storage or get_storage_config()).workspace_path()}"
    return DatabaseConfig(uri=uri, echo=echo)
