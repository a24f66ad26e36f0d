"""Named, configurable knobs used when two values compete."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from syncledger.domain.model import RemoteWriteMode, Side, ValueMethod

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True, slots=True)
class AuthorityOrder:
    """Ascending authority of value methods.

    Methods listed later outrank earlier ones; unlisted methods rank below
    every listed method and tie with each other.
    """

    methods: tuple[ValueMethod, ...] = (
        ValueMethod.DECLARED,
        ValueMethod.MEASURED,
        ValueMethod.AGGREGATED,
    )

    def __post_init__(self) -> None:
        if len(set(self.methods)) != len(self.methods):
            raise ValueError("Authority order must not repeat a method")

    @classmethod
    def of(cls, methods: Sequence[ValueMethod]) -> AuthorityOrder:
        return cls(tuple(methods))

    def rank(self, method: ValueMethod) -> int:
        try:
            return self.methods.index(method) + 1
        except ValueError:
            return 0

    def compare(self, left: ValueMethod, right: ValueMethod) -> int:
        """Return a positive number when ``left`` outranks ``right``."""

        return self.rank(left) - self.rank(right)


@dataclass(frozen=True, slots=True, kw_only=True)
class ResolutionPolicy:
    authority: AuthorityOrder = AuthorityOrder()
    tie_break: Side = Side.REMOTE
    remote_write: RemoteWriteMode = RemoteWriteMode.DOMINANT
