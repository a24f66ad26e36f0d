"""Decide how a local and a remote value for the same field relate."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from syncledger.domain.checksum import checksum
from syncledger.domain.errors import ValidationError
from syncledger.domain.model import (
    ConflictStrategy,
    ContextualValue,
    NoConflict,
    OverrideConflict,
    Side,
    SuperposedConflict,
    SuperposedValue,
)

from .policy import ResolutionPolicy

if TYPE_CHECKING:
    from syncledger.domain.model import Conflict, ContextFilter, ValueContext

log = getLogger(__name__)


class ConflictResolver:
    """Classify a pair of field values as equal, overriding or superposed.

    ``resolve`` is total for well-formed input: any two values that both carry
    a context yield exactly one of the three outcomes.
    """

    def __init__(self, policy: ResolutionPolicy | None = None) -> None:
        self.policy = policy or ResolutionPolicy()

    def resolve(
        self,
        local: ContextualValue,
        remote: ContextualValue,
        strategy: ConflictStrategy = ConflictStrategy.SUPERPOSITION,
        *,
        entity_id: str,
        field: str,
        view_filter: ContextFilter | None = None,
    ) -> Conflict:
        local_context = _require_context(local, Side.LOCAL, field)
        remote_context = _require_context(remote, Side.REMOTE, field)
        common = {
            "entity_id": entity_id,
            "field": field,
            "local": local,
            "remote": remote,
            "strategy": strategy,
        }

        if checksum(local.value) == checksum(remote.value):
            return NoConflict(reason="values-equal", **common)

        match strategy:
            case ConflictStrategy.LOCAL_WINS:
                return OverrideConflict(winner=Side.LOCAL, reason="local-wins", **common)
            case ConflictStrategy.REMOTE_WINS:
                return OverrideConflict(winner=Side.REMOTE, reason="remote-wins", **common)
            case ConflictStrategy.NEWEST_WINS:
                winner = _newer(local_context, remote_context)
                if winner is None:
                    return OverrideConflict(
                        winner=self.policy.tie_break,
                        reason=f"tie-break-{self.policy.tie_break}",
                        **common,
                    )
                return OverrideConflict(winner=winner, reason=f"newer-{winner}", **common)
            case ConflictStrategy.SUPERPOSITION:
                pass

        already_superposed = isinstance(local.value, SuperposedValue) or isinstance(
            remote.value, SuperposedValue
        )
        if not already_superposed and local_context.is_compatible_with(remote_context):
            winner, basis = self._rank(local_context, remote_context)
            return OverrideConflict(winner=winner, reason=f"compatible-contexts:{basis}", **common)

        values = _flatten(local, remote)
        if len(values) < 2:
            # Flattening collapsed both sides onto one value; nothing left to superpose.
            winner = self.policy.tie_break
            return OverrideConflict(winner=winner, reason="collapsed-alternatives", **common)

        dominant_side, basis = self._dominant_side(
            _display_context(local, local_context),
            _display_context(remote, remote_context),
            view_filter,
        )
        dominant_value = _display_value(local if dominant_side is Side.LOCAL else remote)
        dominant_checksum = checksum(dominant_value)
        dominant_index = next(
            index for index, item in enumerate(values) if checksum(item.value) == dominant_checksum
        )
        log.debug(
            f"Superposing {len(values)} values for {entity_id}.{field}; "
            f"{dominant_side} dominates by {basis}"
        )
        return SuperposedConflict(
            cell=SuperposedValue(tuple(values), dominant=dominant_index),
            dominant=dominant_side,
            remote_write=self.policy.remote_write,
            reason=f"incompatible-contexts:{basis}",
            **common,
        )

    def _rank(self, local: ValueContext, remote: ValueContext) -> tuple[Side, str]:
        """Override order for compatible contexts: authority, then recency, then tie-break."""

        authority = self.policy.authority.compare(local.method, remote.method)
        if authority:
            return (Side.LOCAL if authority > 0 else Side.REMOTE), "authority"
        newer = _newer(local, remote)
        if newer is not None:
            return newer, "newest"
        return self.policy.tie_break, "tie-break"

    def _dominant_side(
        self,
        local: ValueContext,
        remote: ValueContext,
        view_filter: ContextFilter | None,
    ) -> tuple[Side, str]:
        """Display order for superposed cells: view filter, recency, authority, tie-break."""

        if view_filter is not None and not view_filter.is_empty:
            local_match, remote_match = view_filter.matches(local), view_filter.matches(remote)
            if local_match != remote_match:
                return (Side.LOCAL if local_match else Side.REMOTE), "view-filter"
        newer = _newer(local, remote)
        if newer is not None:
            return newer, "newest"
        authority = self.policy.authority.compare(local.method, remote.method)
        if authority:
            return (Side.LOCAL if authority > 0 else Side.REMOTE), "authority"
        return self.policy.tie_break, "tie-break"


def _require_context(value: ContextualValue, side: Side, field: str) -> ValueContext:
    if value.context is None:
        raise ValidationError(
            f"The {side} value for {field!r} has no context; "
            "supply one, synthesized as unknown/system/now if necessary",
            reason="missing_context",
        )
    return value.context


def _newer(local: ValueContext, remote: ValueContext) -> Side | None:
    if local.captured_at > remote.captured_at:
        return Side.LOCAL
    if remote.captured_at > local.captured_at:
        return Side.REMOTE
    return None


def _alternatives(value: ContextualValue) -> tuple[ContextualValue, ...]:
    if isinstance(value.value, SuperposedValue):
        return value.value.values
    return (value,)


def _display_value(value: ContextualValue) -> object:
    if isinstance(value.value, SuperposedValue):
        return value.value.dominant_value
    return value.value


def _display_context(value: ContextualValue, fallback: ValueContext) -> ValueContext:
    if isinstance(value.value, SuperposedValue):
        return value.value.values[value.value.dominant].context or fallback
    return fallback


def _flatten(local: ContextualValue, remote: ContextualValue) -> list[ContextualValue]:
    """Merge both sides' alternatives, dropping values already held (by checksum)."""

    seen: set[str] = set()
    merged: list[ContextualValue] = []
    for item in (*_alternatives(local), *_alternatives(remote)):
        key = checksum(item.value)
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return merged
