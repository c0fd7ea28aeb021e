"""
CacheStore: expiry, capacity, eviction order and statistics.
"""
import random

import pytest

from booking_data.cache import CacheConfig, CacheKey, CacheStore
from booking_data.cache.core import namespace_of


@pytest.fixture
def store(clock):
    return CacheStore(CacheConfig(max_items=3), clock=clock)


def test_set_then_get_returns_value(store):
    store.set("booking:current", "value")
    assert store.get("booking:current") == "value"
    assert store.get_statistics().hit_count == 1


def test_missing_key_is_a_miss(store):
    assert store.get("booking:missing") is None
    stats = store.get_statistics()
    assert stats.miss_count == 1
    assert stats.hit_count == 0


def test_entry_is_valid_up_to_expiration(store, clock):
    store.set("k", "v")
    clock.advance(300)
    assert store.get("k") == "v"


def test_expired_entry_is_a_miss_and_removed(store, clock):
    store.set("k", "v")
    clock.advance(301)
    assert store.get("k") is None
    assert len(store) == 0
    assert store.get_statistics().miss_count == 1

    # Already gone: a plain miss, nothing removed twice
    assert store.get("k") is None
    stats = store.get_statistics()
    assert stats.miss_count == 2
    assert stats.eviction_count == 0
    assert store.estimate_memory_usage() == 0


def test_access_does_not_extend_lifetime(store, clock):
    store.set("k", "v")
    clock.advance(200)
    assert store.get("k") == "v"
    clock.advance(101)
    assert store.get("k") is None


def test_never_exceeds_max_items(store):
    for i in range(10):
        store.set(f"key{i}", i)
        assert len(store) <= 3
    assert store.get_statistics().eviction_count == 7


def test_least_recently_used_is_evicted(store, clock):
    store.set("a", 1)
    store.set("b", 2)
    store.set("c", 3)
    clock.advance(1)
    store.get("a")
    store.set("d", 4)

    assert store.contains("a")
    assert not store.contains("b")
    assert store.contains("c")
    assert store.contains("d")


def test_expired_entries_are_evicted_before_live_ones(clock):
    store = CacheStore(CacheConfig(max_items=2), clock=clock)
    store.set("old", 1)
    clock.advance(200)
    store.set("recent", 2)
    clock.advance(101)  # old is now 301s, recent 101s

    store.set("new", 3)

    assert not store.contains("old")
    assert store.get("recent") == 2
    assert store.get("new") == 3
    assert store.get_statistics().eviction_count == 1


def test_replacing_a_key_does_not_evict(store):
    store.set("a", 1)
    store.set("b", 2)
    store.set("c", 3)
    store.set("a", 10)

    assert len(store) == 3
    assert store.get("a") == 10
    assert store.get_statistics().eviction_count == 0


def test_random_eviction_respects_capacity(clock):
    config = CacheConfig(max_items=2, enable_lru=False)
    store = CacheStore(config, clock=clock, rng=random.Random(7))
    for i in range(5):
        store.set(f"k{i}", i)
    assert len(store) == 2
    assert store.contains("k4")


def test_memory_ceiling_triggers_eviction(clock):
    one_mib = 1024 * 1024
    store = CacheStore(
        CacheConfig(max_items=100, max_memory_mb=2),
        size_of=lambda value: one_mib,
        clock=clock,
    )
    store.set("a", "x")
    store.set("b", "x")
    store.set("c", "x")

    assert not store.contains("a")
    assert store.contains("c")
    assert store.estimate_memory_usage() < 3 * one_mib


def test_replacing_with_a_larger_value_respects_memory_ceiling(clock):
    one_mib = 1024 * 1024
    store = CacheStore(
        CacheConfig(max_items=100, max_memory_mb=2),
        size_of=lambda value: value,
        clock=clock,
    )
    store.set("a", one_mib // 2)
    store.set("b", one_mib // 2)
    store.set("b", one_mib + one_mib // 2)

    assert not store.contains("a")
    assert store.contains("b")
    assert store.estimate_memory_usage() <= store.max_memory_bytes
    assert store.get_statistics().eviction_count == 1


def test_hit_rate(store):
    store.set("k", "v")
    store.get("k")
    store.get("k")
    store.get("k")
    store.get("other")

    stats = store.get_statistics()
    assert stats.hit_rate == 0.75
    assert stats.hit_rate_percentage == "75.0%"


def test_hit_rate_is_zero_without_requests(store):
    assert store.get_statistics().hit_rate == 0.0


def test_clear_resets_counters(store):
    store.set("k", "v")
    store.get("k")
    store.get("missing")

    assert store.clear() == 1

    stats = store.get_statistics()
    assert stats.total_items == 0
    assert stats.hit_count == 0
    assert stats.miss_count == 0
    assert stats.eviction_count == 0
    assert stats.top_keys == []
    assert stats.memory_usage == 0


def test_remove(store):
    store.set("k", "v")
    assert store.remove("k") is True
    assert store.remove("k") is False
    assert store.get("k") is None


def test_clear_namespace_only_touches_that_namespace(clock):
    store = CacheStore(CacheConfig(), clock=clock)
    store.set("booking:1", 1)
    store.set("booking:2", 2)
    store.set("user:1", 3)
    store.set("bookingish:1", 4)

    assert store.clear_namespace("booking") == 2
    assert sorted(store.keys()) == ["bookingish:1", "user:1"]


def test_warmup_skips_existing_keys_and_counts_nothing(store):
    store.set("a", "original")
    inserted = store.warmup([("a", "new"), ("b", "warm")])

    assert inserted == 1
    stats = store.get_statistics()
    assert stats.hit_count == 0
    assert stats.miss_count == 0
    assert store.get("a") == "original"
    assert store.get("b") == "warm"


def test_top_keys_most_accessed_first(clock):
    store = CacheStore(CacheConfig(), clock=clock)
    store.set("booking:a", 1)
    store.set("booking:b", 2)
    for _ in range(3):
        store.get("booking:b")
    store.get("booking:a")

    assert store.get_statistics().top_keys[0] == ("booking:b", 3)
    assert store.get_metrics().namespace_stats == {"booking": 4}


def test_access_counts_only_track_stored_keys(store):
    store.set("booking:a", 1)
    store.get("booking:a")
    store.get("booking:missing")
    assert store.get_statistics().top_keys == [("booking:a", 1)]

    store.remove("booking:a")
    assert store.get_statistics().top_keys == []


def test_replacing_a_key_keeps_its_access_count(store):
    store.set("k", 1)
    store.get("k")
    store.set("k", 2)
    store.get("k")
    assert store.get_statistics().top_keys == [("k", 2)]


def test_cache_key_overloads_reject_invalid_keys(store):
    invalid = CacheKey("", "current")
    assert store.set_key(invalid, "v") is False
    assert store.get_key(invalid) is None
    assert store.remove_key(invalid) is False
    assert len(store) == 0
    assert store.get_statistics().miss_count == 0


def test_cache_key_overloads(store):
    key = CacheKey.booking("current")
    assert store.set_key(key, "v") is True
    assert store.get_key(key) == "v"
    assert store.get("booking:current") == "v"
    assert store.remove_key(key) is True


@pytest.mark.parametrize(
    "cache_key, valid",
    [
        (CacheKey("booking", "current"), True),
        (CacheKey("", "current"), False),
        (CacheKey("booking", ""), False),
        (CacheKey("book:ing", "current"), False),
        (CacheKey("booking", "a:b"), False),
        (CacheKey("n" * 50, "k"), True),
        (CacheKey("n" * 51, "k"), False),
        (CacheKey("n", "k" * 101), False),
    ],
)
def test_cache_key_validity(cache_key, valid):
    assert cache_key.is_valid() is valid


def test_cache_key_factories():
    assert CacheKey.booking("x").full_key == "booking:x"
    assert str(CacheKey.user("x")) == "user:x"
    assert CacheKey.session("x").namespace == "session"
    assert CacheKey.temp("x").namespace == "temp"
    assert namespace_of("temp:x") == "temp"
    assert namespace_of("plain") is None


def test_config_presets():
    assert CacheConfig.high_performance().max_items == 500
    assert CacheConfig.memory_optimized().expiration_seconds == 180.0
    assert CacheConfig.default() == CacheConfig()


def test_zero_capacity_is_rejected(clock):
    with pytest.raises(ValueError):
        CacheStore(CacheConfig(max_items=0), clock=clock)
