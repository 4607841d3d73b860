"""Short-lived cache in front of event lookups."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from cachetools import TTLCache


class EventCache:
    """TTL cache for event rows, keyed by event id.

    Writes go through the store, which invalidates the key, so a cached
    event is never newer than the store and at most ``ttl`` seconds older.
    """

    def __init__(self, ttl: int, maxsize: int = 1000) -> None:
        """Initialize the cache.

        Args:
            ttl: Time-to-live of an entry in seconds
            maxsize: Maximum number of cached events
        """
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def _get_key_lock(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: Hashable) -> Optional[Any]:
        return self._cache.get(key)

    def set(self, key: Hashable, value: Any) -> None:
        self._cache[key] = value

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Get value from cache or load and cache it.

        Concurrent misses on the same key share one load. Loader errors
        propagate and nothing is cached.
        """
        if key in self._cache:
            self.hits += 1
            return self._cache[key]

        async with self._get_key_lock(key):
            if key in self._cache:
                self.hits += 1
                return self._cache[key]
            self.misses += 1
            value = await loader()
            if value is not None:
                self._cache[key] = value
            return value

    def invalidate(self, key: Hashable) -> None:
        self._cache.pop(key, None)
        self._locks.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
        self._locks.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._cache),
            "maxsize": self._cache.maxsize,
            "ttl": self._cache.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }
