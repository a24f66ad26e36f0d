"""Identity provider backed by environment configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from syncledger.config.identity import IdentityConfig, default_agent_id
from syncledger.domain.model import Agent, AgentKind

if TYPE_CHECKING:
    from syncledger.domain.ports import IdentityProvider


@dataclass(slots=True)
class EnvironmentIdentityProvider:
    """Act as the configured agent, or as the login user when none is configured."""

    config: IdentityConfig = field(default_factory=IdentityConfig.from_environment)

    def current_agent(self) -> Agent:
        agent_id = self.config.agent_id or default_agent_id()
        return Agent(
            id=agent_id,
            name=self.config.agent_name or agent_id,
            kind=AgentKind.USER,
            email=self.config.agent_email,
        )


if TYPE_CHECKING:
    _identity_check: IdentityProvider = EnvironmentIdentityProvider()
