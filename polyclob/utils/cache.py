"""
Thread-safe TTL cache for market metadata.

Tick size, minimum size and the neg-risk flag change rarely; caching them
keeps order construction from spending quota on every call.
"""

import time
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with expiry."""
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """
    Thread-safe cache with time-to-live and LRU eviction.

    Owned by one client instance.
    """

    def __init__(self, default_ttl: float = 300.0, max_size: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize cache.

        Args:
            default_ttl: Default TTL in seconds (5 minutes)
            max_size: Maximum entries before LRU eviction
            clock: Monotonic clock
        """
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.RLock()
        # One fetch per key at a time
        self._fetch_locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> Optional[V]:
        """Cached value, or None if missing or expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._cache[key]
                logger.debug(f"Cache expired: {key}")
                return None
            self._cache.move_to_end(key)
            return entry.value

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        ttl = ttl if ttl is not None else self.default_ttl
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            elif len(self._cache) >= self.max_size:
                lru_key, _ = self._cache.popitem(last=False)
                logger.debug(f"Cache LRU eviction: {lru_key}")
            self._cache[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], V], ttl: Optional[float] = None) -> V:
        """
        Get from cache or fetch if missing/expired.

        Concurrent misses on the same key perform a single fetch; misses on
        different keys fetch in parallel. Fetch errors propagate and nothing
        is cached.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._lock:
            fetch_lock = self._fetch_locks.setdefault(key, threading.Lock())
        try:
            with fetch_lock:
                value = self.get(key)
                if value is not None:
                    return value
                logger.debug(f"Cache miss, fetching: {key}")
                value = fetch_fn()
                self.set(key, value, ttl)
                return value
        finally:
            with self._lock:
                if self._fetch_locks.get(key) is fetch_lock:
                    del self._fetch_locks[key]

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
