"""Acting agent configuration."""

from __future__ import annotations

import getpass
from dataclasses import dataclass

from .env import optional_env_var


@dataclass(frozen=True, slots=True)
class IdentityConfig:
    agent_id: str | None = None
    agent_name: str | None = None
    agent_email: str | None = None

    @classmethod
    def from_environment(cls) -> IdentityConfig:
        return cls(
            agent_id=optional_env_var("SYNCLEDGER_AGENT_ID"),
            agent_name=optional_env_var("SYNCLEDGER_AGENT_NAME"),
            agent_email=optional_env_var("SYNCLEDGER_AGENT_EMAIL"),
        )


def default_agent_id() -> str:
    return getpass.getuser()
