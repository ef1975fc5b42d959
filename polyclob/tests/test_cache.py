"""Tests for cache module."""

import threading

import pytest

from polyclob.utils.cache import TTLCache


def test_ttl_cache_basic(clock):
    """Test basic cache operations."""
    cache = TTLCache(default_ttl=1.0, clock=clock)

    cache.set("key1", "value1")
    assert cache.get("key1") == "value1"
    assert "key1" in cache

    assert cache.get("missing") is None

    cache.set("key2", "value2", ttl=0.1)
    clock.now += 0.1
    assert cache.get("key2") is None
    assert len(cache) == 1


def test_lru_eviction(clock):
    cache = TTLCache(max_size=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")  # b is now least recently used
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_ttl_cache_get_or_fetch(clock):
    """Test get_or_fetch fetches once per key."""
    cache = TTLCache(clock=clock)
    fetch_count = 0

    def fetch():
        nonlocal fetch_count
        fetch_count += 1
        return f"value_{fetch_count}"

    assert cache.get_or_fetch("key", fetch) == "value_1"
    assert cache.get_or_fetch("key", fetch) == "value_1"
    assert fetch_count == 1

    cache.delete("key")
    assert cache.get_or_fetch("key", fetch) == "value_2"


def test_concurrent_misses_fetch_once():
    cache = TTLCache()
    release = threading.Event()
    calls = []

    def fetch():
        calls.append(1)
        release.wait(5)
        return "value"

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache.get_or_fetch("key", fetch)))
        for _ in range(5)
    ]
    for thread in threads:
        thread.start()
    release.set()
    for thread in threads:
        thread.join(5)

    assert results == ["value"] * 5
    assert len(calls) == 1


def test_fetch_error_propagates_and_is_not_cached(clock):
    cache = TTLCache(clock=clock)

    def failing():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_fetch("key", failing)
    assert cache.get_or_fetch("key", lambda: "recovered") == "recovered"


def test_fetch_locks_released(clock):
    cache = TTLCache(clock=clock)

    def failing():
        raise RuntimeError("upstream down")

    for key in ("a", "b", "c"):
        with pytest.raises(RuntimeError):
            cache.get_or_fetch(key, failing)
    cache.get_or_fetch("d", lambda: "value")
    cache.get_or_fetch("d", lambda: "other")

    assert cache._fetch_locks == {}
