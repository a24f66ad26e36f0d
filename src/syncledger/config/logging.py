"""Logging setup for the syncledger CLI."""

from __future__ import annotations

import logging

from .env import optional_env_var
from .errors import ConfigurationError

# Per-request chatter from the HTTP stack drowns out sync progress at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "hishel", "httpx_retries")


def _level_from_environment(default: int) -> int:
    raw = optional_env_var("SYNCLEDGER_LOG_LEVEL")
    if raw is None:
        return default
    level = logging.getLevelNamesMapping().get(raw.upper())
    if level is None:
        raise ConfigurationError(f"SYNCLEDGER_LOG_LEVEL is not a logging level: {raw!r}")
    return level


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Configure the root logger with a terse CLI format.

    An explicit ``level`` wins over ``SYNCLEDGER_LOG_LEVEL``, which wins over INFO.
    Third-party HTTP loggers stay at WARNING unless debugging.
    """

    resolved = level if level is not None else _level_from_environment(logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(resolved if resolved <= logging.DEBUG else logging.WARNING)
