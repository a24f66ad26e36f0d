"""Value provenance: who asserted a value, how, at what scale and when."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .enums import AgentKind, Scale, ValueMethod

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(frozen=True, slots=True)
class Agent:
    """Acting party behind a change or an asserted value."""

    id: str
    name: str | None = None
    kind: AgentKind = AgentKind.USER
    email: str | None = None


SYSTEM_AGENT = Agent(id="system", name="system", kind=AgentKind.SYSTEM)


@dataclass(frozen=True, slots=True)
class Timeframe:
    """Closed validity interval; open ends are unbounded."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.start and self.end and self.start > self.end:
            raise ValueError("Timeframe start must be before end")

    def overlaps(self, other: Timeframe) -> bool:
        if self.end is not None and other.start is not None and self.end < other.start:
            return False
        return not (self.start is not None and other.end is not None and other.end < self.start)


@dataclass(frozen=True, slots=True, kw_only=True)
class ValueContext:
    """Metadata describing how a value came to be."""

    method: ValueMethod = ValueMethod.UNKNOWN
    scale: Scale = Scale.UNKNOWN
    definition: str | None = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    timeframe: Timeframe | None = None
    agent: Agent = SYSTEM_AGENT
    source: str | None = None

    def is_compatible_with(self, other: ValueContext) -> bool:
        """Return whether both contexts describe the same facet of a fact.

        Contexts are incompatible when they differ in method, scale or
        definition, or when both carry timeframes that do not overlap.
        """

        if (self.method, self.scale, self.definition) != (
            other.method,
            other.scale,
            other.definition,
        ):
            return False
        if self.timeframe is None or other.timeframe is None:
            return True
        return self.timeframe.overlaps(other.timeframe)


def unknown_context(*, now: datetime | None = None, source: str | None = None) -> ValueContext:
    """Synthesize the ``unknown/system/now`` context for callers without provenance."""

    return ValueContext(
        captured_at=now or datetime.now(tz=UTC),
        agent=SYSTEM_AGENT,
        source=source,
    )


@dataclass(frozen=True, slots=True)
class ContextualValue:
    value: object
    context: ValueContext | None


@dataclass(frozen=True, slots=True, kw_only=True)
class ContextFilter:
    """View-level preference used to pick the dominant value of a superposed cell."""

    method: ValueMethod | None = None
    scale: Scale | None = None
    definition: str | None = None

    def matches(self, context: ValueContext) -> bool:
        if self.method is not None and context.method is not self.method:
            return False
        if self.scale is not None and context.scale is not self.scale:
            return False
        return self.definition is None or context.definition == self.definition

    @property
    def is_empty(self) -> bool:
        return self.method is None and self.scale is None and self.definition is None


@dataclass(frozen=True, slots=True)
class SuperposedValue:
    """Multi-valued cell: contextually distinct values held side by side.

    ``dominant`` only selects the value shown by default; every alternative
    stays retrievable through ``values``.
    """

    values: tuple[ContextualValue, ...]
    dominant: int = 0

    def __post_init__(self) -> None:
        if len(self.values) < 2:
            raise ValueError("Superposed value needs at least two alternatives")
        if not 0 <= self.dominant < len(self.values):
            raise ValueError("Dominant index out of range")

    @property
    def dominant_value(self) -> object:
        return self.values[self.dominant].value

    @property
    def alternatives(self) -> tuple[ContextualValue, ...]:
        return tuple(item for index, item in enumerate(self.values) if index != self.dominant)

    def __iter__(self) -> Iterator[ContextualValue]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


def plain_value(value: object) -> object:
    """Collapse a superposed cell to its dominant value; other values pass through."""

    if isinstance(value, SuperposedValue):
        return value.dominant_value
    return value
