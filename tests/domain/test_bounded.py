from __future__ import annotations

import pytest

from syncledger.domain.bounded import BoundedCache, BoundedStack


def test_stack_evicts_oldest_entry_when_full() -> None:
    stack: BoundedStack[int] = BoundedStack(2)
    for item in (1, 2, 3):
        stack.push(item)

    assert list(stack) == [2, 3]
    assert stack.evicted == 1
    assert stack.pop() == 3
    assert stack.peek() == 2


def test_stack_pop_on_empty_returns_none() -> None:
    stack: BoundedStack[str] = BoundedStack(1)

    assert stack.pop() is None
    assert not stack


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError, match="Capacity"):
        BoundedStack[int](0)
    with pytest.raises(ValueError, match="Capacity"):
        BoundedCache[str, int](0)


def test_cache_evicts_least_recently_stored_key() -> None:
    cache: BoundedCache[str, int] = BoundedCache(2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)
    cache.put("c", 3)

    assert "b" not in cache
    assert cache.get("a") == 10
    assert cache.get("c") == 3


def test_cache_discard_where_removes_matching_keys() -> None:
    cache: BoundedCache[tuple[str, int], str] = BoundedCache(10)
    cache.put(("x", 1), "one")
    cache.put(("x", 2), "two")
    cache.put(("y", 1), "other")

    removed = cache.discard_where(lambda key: key[0] == "x")

    assert removed == 2
    assert len(cache) == 1
