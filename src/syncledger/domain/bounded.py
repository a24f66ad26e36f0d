"""Capacity-bounded containers with oldest-first eviction."""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterator


def _check_capacity(capacity: int) -> None:
    if capacity < 1:
        raise ValueError("Capacity must be at least 1")


class BoundedStack[T]:
    """LIFO stack that silently drops its oldest entry once full."""

    def __init__(self, capacity: int) -> None:
        _check_capacity(capacity)
        self._items: deque[T] = deque(maxlen=capacity)
        self.evicted = 0

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: T) -> None:
        if len(self._items) == self.capacity:
            self.evicted += 1
        self._items.append(item)

    def pop(self) -> T | None:
        if not self._items:
            return None
        return self._items.pop()

    def peek(self) -> T | None:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[T]:
        """Iterate oldest first."""
        return iter(self._items)


class BoundedCache[K: Hashable, V]:
    """Insertion-ordered cache evicting the least recently stored key."""

    def __init__(self, capacity: int) -> None:
        _check_capacity(capacity)
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = value
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def discard_where(self, predicate: Callable[[K], bool]) -> int:
        stale = [key for key in self._entries if predicate(key)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
