from __future__ import annotations

import pytest

from nosqldata_py.cache import PreparedQueryCache
from nosqldata_py.store import PreparedStatement
from nosqldata_py.testkit import fixed_clock


def _handle(sql: str) -> PreparedStatement:
    return PreparedStatement(statement=sql, plan=f"plan:{sql}")


def test_rejects_negative_bounds() -> None:
    with pytest.raises(ValueError, match="capacity"):
        PreparedQueryCache(capacity=-1)
    with pytest.raises(ValueError, match="lifetime_ms"):
        PreparedQueryCache(lifetime_ms=-1)


def test_evicts_least_recently_used() -> None:
    cache = PreparedQueryCache(capacity=2, lifetime_ms=0)
    cache.put("a", _handle("a"))
    cache.put("b", _handle("b"))
    assert cache.get("a") is not None

    cache.put("c", _handle("c"))

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache
    assert len(cache) == 2


def test_zero_capacity_is_unbounded() -> None:
    cache = PreparedQueryCache(capacity=0, lifetime_ms=0)
    for i in range(50):
        cache.put(f"q{i}", _handle(f"q{i}"))
    assert len(cache) == 50


def test_zero_capacity_still_expires_entries() -> None:
    clock = fixed_clock(0.0)
    cache = PreparedQueryCache(capacity=0, lifetime_ms=1_000, clock=clock)
    for i in range(2_000):
        cache.put(f"q{i}", _handle(f"q{i}"))
    assert len(cache) == 2_000

    clock.advance(2.0)
    assert cache.get("q0") is None
    assert len(cache) == 0


def test_entries_expire_after_lifetime_since_last_access() -> None:
    clock = fixed_clock(100.0)
    cache = PreparedQueryCache(capacity=10, lifetime_ms=1_000, clock=clock)
    cache.put("q", _handle("q"))

    clock.advance(0.9)
    assert cache.get("q") is not None
    clock.advance(0.9)
    assert cache.get("q") is not None

    clock.advance(1.5)
    assert cache.get("q") is None
    assert len(cache) == 0


def test_lookups_return_copies() -> None:
    cache = PreparedQueryCache()
    original = _handle("q")
    cache.put("q", original)

    first = cache.get("q")
    assert first is not None
    first.set_variable("$p", 1)

    second = cache.get("q")
    assert second is not None
    assert second is not first
    assert second is not original
    assert second.variables == {}
    assert second.plan == "plan:q"


def test_get_or_prepare_prepares_once() -> None:
    cache = PreparedQueryCache()
    prepared: list[str] = []

    def prepare(sql: str) -> PreparedStatement:
        prepared.append(sql)
        return _handle(sql)

    first = cache.get_or_prepare("select 1", prepare)
    second = cache.get_or_prepare("select 1", prepare)

    assert prepared == ["select 1"]
    assert first is not second
    assert first.statement == second.statement == "select 1"


def test_remove_and_clear() -> None:
    cache = PreparedQueryCache()
    cache.put("a", _handle("a"))
    cache.put("b", _handle("b"))

    assert cache.remove("a") is True
    assert cache.remove("a") is False
    cache.clear()
    assert len(cache) == 0
    assert 42 not in cache
