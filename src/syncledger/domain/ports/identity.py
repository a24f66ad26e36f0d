"""Port resolving the acting agent."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from syncledger.domain.model import SYSTEM_AGENT

if TYPE_CHECKING:
    from syncledger.domain.model import Agent

log = getLogger(__name__)


@runtime_checkable
class IdentityProvider(Protocol):
    def current_agent(self) -> Agent: ...


def resolve_agent(provider: IdentityProvider | None) -> Agent:
    """Ask ``provider`` who is acting, falling back to the system agent."""

    if provider is None:
        return SYSTEM_AGENT
    try:
        return provider.current_agent()
    except Exception:  # noqa: BLE001
        log.warning("Identity lookup failed; acting as the system agent", exc_info=True)
        return SYSTEM_AGENT
