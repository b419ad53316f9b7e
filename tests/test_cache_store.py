"""Unit tests for cache/store.py -- CacheStore TTL and prefix invalidation.

Covers:
- set/get/delete round trip and default values
- expired entries read as absent before any purge runs
- delete_prefix() removes exactly the matching family
- get_or_compute() primes on miss, serves hits, propagates producer errors
- purge_expired(), stats(), make_key()
"""

from __future__ import annotations

import pytest

from cache import store as store_module
from cache.store import CacheStore


class _Clock:
    """Controllable replacement for time.monotonic."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> _Clock:
    fake = _Clock()
    monkeypatch.setattr(store_module.time, "monotonic", fake)
    return fake


@pytest.fixture
def cache() -> CacheStore:
    return CacheStore(default_ttl=60)


class TestBasicOperations:
    def test_set_then_get(self, cache: CacheStore) -> None:
        assert cache.set("a", {"x": 1}) is True
        assert cache.get("a") == {"x": 1}

    def test_missing_key_returns_default(self, cache: CacheStore) -> None:
        assert cache.get("nope") is None
        assert cache.get("nope", "fallback") == "fallback"

    def test_delete_returns_count(self, cache: CacheStore) -> None:
        cache.set("a", 1)
        assert cache.delete("a") == 1
        assert cache.delete("a") == 0
        assert cache.has("a") is False

    def test_clear(self, cache: CacheStore) -> None:
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert cache.keys() == []


class TestExpiry:
    def test_expired_entry_reads_as_absent_before_purge(self, cache: CacheStore, clock: _Clock) -> None:
        cache.set("k", "v", ttl=10)
        clock.now += 11
        assert cache.get("k") is None, "Expired entry must not be served"
        assert cache.has("k") is False

    def test_entry_alive_before_ttl(self, cache: CacheStore, clock: _Clock) -> None:
        cache.set("k", "v", ttl=10)
        clock.now += 9
        assert cache.get("k") == "v"

    def test_default_ttl_applies(self, cache: CacheStore, clock: _Clock) -> None:
        cache.set("k", "v")
        clock.now += 61
        assert cache.get("k") is None

    def test_purge_expired_removes_only_expired(self, cache: CacheStore, clock: _Clock) -> None:
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=500)
        clock.now += 10
        assert cache.purge_expired() == 1
        assert cache.keys() == ["long"]


class TestPrefixInvalidation:
    def test_delete_prefix_removes_family(self, cache: CacheStore) -> None:
        cache.set("users:all:page:1:limit:10", [1])
        cache.set("users:all:page:2:limit:10", [2])
        cache.set("posts:all:page:1:limit:10", [3])
        assert cache.delete_prefix("users:") == 2
        assert cache.keys() == ["posts:all:page:1:limit:10"]

    def test_delete_prefix_without_match(self, cache: CacheStore) -> None:
        cache.set("posts:1", 1)
        assert cache.delete_prefix("users:") == 0


class TestGetOrCompute:
    def test_miss_runs_producer_and_primes(self, cache: CacheStore) -> None:
        calls = []

        def producer():
            calls.append(1)
            return {"items": [], "total": 0}

        assert cache.get_or_compute("k", producer) == {"items": [], "total": 0}
        assert cache.get_or_compute("k", producer) == {"items": [], "total": 0}
        assert len(calls) == 1, f"Producer ran {len(calls)} times, expected 1"

    def test_cached_falsy_value_is_a_hit(self, cache: CacheStore) -> None:
        cache.set("k", 0)
        assert cache.get_or_compute("k", lambda: pytest.fail("producer must not run")) == 0

    def test_producer_error_propagates_and_caches_nothing(self, cache: CacheStore) -> None:
        def producer():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError, match="db down"):
            cache.get_or_compute("k", producer)
        assert cache.has("k") is False


class TestStatsAndKeys:
    def test_stats_count_hits_and_misses(self, cache: CacheStore) -> None:
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats == {"keys": 1, "hits": 1, "misses": 1}, f"Got {stats}"

    def test_make_key_is_order_independent(self) -> None:
        assert CacheStore.make_key("users", {"page": 1, "limit": 10}) == CacheStore.make_key(
            "users", {"limit": 10, "page": 1}
        )


class TestFamilyGenerations:
    def test_invalidation_during_compute_skips_the_write(self, cache: CacheStore) -> None:
        def producer():
            cache.delete_prefix("users:")
            return "stale"

        assert cache.get_or_compute("users:all:page:1", producer, family="users:") == "stale"
        assert cache.has("users:all:page:1") is False

    def test_unrelated_invalidation_does_not_block(self, cache: CacheStore) -> None:
        def producer():
            cache.delete_prefix("posts:")
            return "fresh"

        cache.get_or_compute("users:all:page:1", producer, family="users:")
        assert cache.get("users:all:page:1") == "fresh"

    def test_broader_prefix_bumps_family(self, cache: CacheStore) -> None:
        before = cache.generation("users:all:")
        cache.delete_prefix("users:")
        assert cache.generation("users:all:") == before + 1

    def test_set_if_current_rejects_old_generation(self, cache: CacheStore) -> None:
        generation = cache.generation("users:")
        cache.clear()
        assert cache.set_if_current("users:k", 1, "users:", generation) is False
        assert cache.set_if_current("users:k", 1, "users:", cache.generation("users:")) is True
        assert cache.get("users:k") == 1
