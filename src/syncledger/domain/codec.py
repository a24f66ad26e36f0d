"""JSON-compatible encoding of field values, including superposed cells.

The same encoding feeds checksums and every adapter that persists values, so a
value checksums identically before and after a storage round trip.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Final, cast

from syncledger.domain.model import (
    Agent,
    AgentKind,
    ConflictOutcome,
    ConflictStrategy,
    ContextualValue,
    RemoteWriteMode,
    Scale,
    SuperposedValue,
    SyncDirection,
    SyncResolution,
    Timeframe,
    ValueContext,
    ValueMethod,
)

SUPERPOSED_KEY: Final[str] = "__superposed__"

type JsonValue = None | bool | int | float | str | list[JsonValue] | dict[str, JsonValue]


def isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_jsonable(value: object) -> JsonValue:
    """Encode ``value`` into plain JSON types."""

    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, SuperposedValue):
        return {SUPERPOSED_KEY: _encode_superposed(value)}
    if isinstance(value, Mapping):
        mapping = cast(Mapping[object, object], value)
        return {str(key): to_jsonable(item) for key, item in mapping.items()}
    if isinstance(value, set | frozenset):
        items = [to_jsonable(item) for item in cast(set[object], value)]
        return sorted(items, key=repr)
    if isinstance(value, list | tuple):
        return [to_jsonable(item) for item in cast(list[object], value)]
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def from_jsonable(value: object) -> object:
    """Decode values produced by :func:`to_jsonable`; superposed cells are rebuilt."""

    if isinstance(value, Mapping):
        mapping = cast(Mapping[str, object], value)
        if set(mapping) == {SUPERPOSED_KEY}:
            return _decode_superposed(mapping[SUPERPOSED_KEY])
        return {key: from_jsonable(item) for key, item in mapping.items()}
    if isinstance(value, list):
        return [from_jsonable(item) for item in cast(list[object], value)]
    return value


def encode_fields(fields: Mapping[str, object] | None) -> dict[str, JsonValue] | None:
    if fields is None:
        return None
    return {key: to_jsonable(value) for key, value in fields.items()}


def decode_fields(payload: object) -> dict[str, object] | None:
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValueError("Field payload must be a mapping")
    mapping = cast(Mapping[str, object], payload)
    return {key: from_jsonable(value) for key, value in mapping.items()}


def encode_agent(agent: Agent) -> dict[str, JsonValue]:
    return {"id": agent.id, "name": agent.name, "kind": agent.kind.value, "email": agent.email}


def decode_agent(payload: Mapping[str, object]) -> Agent:
    name = payload.get("name")
    email = payload.get("email")
    return Agent(
        id=str(payload.get("id") or "unknown"),
        name=name if isinstance(name, str) else None,
        kind=AgentKind(str(payload.get("kind") or AgentKind.SYSTEM.value)),
        email=email if isinstance(email, str) else None,
    )


def encode_context(context: ValueContext) -> dict[str, JsonValue]:
    timeframe: JsonValue = None
    if context.timeframe is not None:
        timeframe = {
            "start": isoformat(context.timeframe.start) if context.timeframe.start else None,
            "end": isoformat(context.timeframe.end) if context.timeframe.end else None,
        }
    return {
        "method": context.method.value,
        "scale": context.scale.value,
        "definition": context.definition,
        "captured_at": isoformat(context.captured_at),
        "timeframe": timeframe,
        "agent": encode_agent(context.agent),
        "source": context.source,
    }


def decode_context(payload: Mapping[str, object]) -> ValueContext:
    timeframe_payload = payload.get("timeframe")
    timeframe: Timeframe | None = None
    if isinstance(timeframe_payload, Mapping):
        bounds = cast(Mapping[str, object], timeframe_payload)
        start, end = bounds.get("start"), bounds.get("end")
        timeframe = Timeframe(
            start=parse_datetime(start) if isinstance(start, str) else None,
            end=parse_datetime(end) if isinstance(end, str) else None,
        )
    agent_payload = payload.get("agent")
    definition = payload.get("definition")
    source = payload.get("source")
    captured_at = payload.get("captured_at")
    return ValueContext(
        method=ValueMethod(str(payload.get("method") or ValueMethod.UNKNOWN.value)),
        scale=Scale(str(payload.get("scale") or Scale.UNKNOWN.value)),
        definition=definition if isinstance(definition, str) else None,
        captured_at=(
            parse_datetime(captured_at)
            if isinstance(captured_at, str)
            else datetime.fromtimestamp(0, tz=UTC)
        ),
        timeframe=timeframe,
        agent=(
            decode_agent(cast(Mapping[str, object], agent_payload))
            if isinstance(agent_payload, Mapping)
            else Agent(id="unknown", kind=AgentKind.SYSTEM)
        ),
        source=source if isinstance(source, str) else None,
    )


def _encode_superposed(cell: SuperposedValue) -> dict[str, JsonValue]:
    values: list[JsonValue] = []
    for item in cell.values:
        values.append(
            {
                "value": to_jsonable(item.value),
                "context": encode_context(item.context) if item.context else None,
            }
        )
    return {"dominant": cell.dominant, "values": values}


def _decode_superposed(payload: object) -> SuperposedValue:
    if not isinstance(payload, Mapping):
        raise ValueError("Superposed payload must be a mapping")
    mapping = cast(Mapping[str, object], payload)
    raw_values = mapping.get("values")
    if not isinstance(raw_values, list):
        raise ValueError("Superposed payload must list its values")
    values: list[ContextualValue] = []
    for raw in cast(list[object], raw_values):
        if not isinstance(raw, Mapping):
            raise ValueError("Superposed alternatives must be mappings")
        item = cast(Mapping[str, object], raw)
        context_payload = item.get("context")
        context = (
            decode_context(cast(Mapping[str, object], context_payload))
            if isinstance(context_payload, Mapping)
            else None
        )
        values.append(ContextualValue(from_jsonable(item.get("value")), context))
    dominant = mapping.get("dominant", 0)
    return SuperposedValue(tuple(values), dominant=dominant if isinstance(dominant, int) else 0)


def encode_resolution(resolution: SyncResolution) -> dict[str, JsonValue]:
    return {
        "session_id": resolution.session_id,
        "direction": resolution.direction.value,
        "outcome": resolution.outcome.value if resolution.outcome else None,
        "strategy": resolution.strategy.value if resolution.strategy else None,
        "target": resolution.target,
        "remote_write": resolution.remote_write.value if resolution.remote_write else None,
        "information_loss": resolution.information_loss,
    }


def decode_resolution(payload: Mapping[str, object]) -> SyncResolution:
    outcome = payload.get("outcome")
    strategy = payload.get("strategy")
    remote_write = payload.get("remote_write")
    target = payload.get("target")
    return SyncResolution(
        session_id=str(payload.get("session_id") or ""),
        direction=SyncDirection(str(payload.get("direction") or SyncDirection.BIDIRECTIONAL)),
        outcome=ConflictOutcome(outcome) if isinstance(outcome, str) else None,
        strategy=ConflictStrategy(strategy) if isinstance(strategy, str) else None,
        target="remote" if target == "remote" else ("local" if target == "local" else None),
        remote_write=RemoteWriteMode(remote_write) if isinstance(remote_write, str) else None,
        information_loss=bool(payload.get("information_loss")),
    )
