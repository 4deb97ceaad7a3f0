"""
Response Cache

Key -> (value, stored_at) cache used by the read-heavy endpoints
(order listings, pending-order summary, public menu).

Validity is decided when reading: an entry is fresh for a caller when
``now - stored_at < max_age``, where ``max_age`` is supplied by that
caller. The same entry can therefore be fresh for one reader and stale
for another that asks with a shorter duration. A stale read is a miss
but does NOT evict the entry; it stays until overwritten or cleared.

There is no size bound. Storage and clock are injected so tests can run
against an isolated store and a fake clock.

Usage:
    from lanchonete.core.cache import get_cache, CacheDuration

    cache = get_cache()
    cached = cache.get("orders:42", CacheDuration.MEDIUM)
    if cached is None:
        cached = build_payload()
        cache.set("orders:42", cached)

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional

import redis

from lanchonete.core.config import CacheBackend, get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock_ms() -> int:
    """Wall clock in milliseconds."""
    return int(time.time() * 1000)


class CacheDuration:
    """Read-time freshness presets, in milliseconds."""
    SHORT = 5_000
    MEDIUM = 30_000
    LONG = 60_000


# =============================================================================
# STORES
# =============================================================================

class BaseStore(ABC):
    """Minimal key/value store shared by the cache and the rate limiter."""

    @abstractmethod
    def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def set(self, key: str, entry: dict) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryStore(BaseStore):
    """Process-local dict store."""

    def __init__(self):
        self._data: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, entry: dict) -> None:
        with self._lock:
            self._data[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisStore(BaseStore):
    """
    Redis-backed store so several API workers share entries.

    Entries are JSON documents under ``{namespace}:{key}``. Values must
    therefore be JSON serializable.
    """

    def __init__(self, client: redis.Redis, namespace: str):
        self.client = client
        self.namespace = namespace

    def _full(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[dict]:
        raw = self.client.get(self._full(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, entry: dict) -> None:
        self.client.set(self._full(key), json.dumps(entry, default=str))

    def delete(self, key: str) -> None:
        self.client.delete(self._full(key))

    def keys(self) -> list[str]:
        prefix = f"{self.namespace}:"
        found = []
        for raw in self.client.scan_iter(match=f"{prefix}*"):
            name = raw.decode() if isinstance(raw, bytes) else raw
            found.append(name[len(prefix):])
        return found

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)


def build_store(namespace: str) -> BaseStore:
    """Create the store configured by ``CACHE_BACKEND``."""
    settings = get_settings()
    if settings.cache_backend == CacheBackend.REDIS:
        logger.info(f"Store '{namespace}': using Redis ({settings.redis_url})")
        return RedisStore(redis.Redis.from_url(settings.redis_url), namespace)
    return MemoryStore()


# =============================================================================
# CACHE
# =============================================================================

@dataclass
class CacheStats:
    size: int
    keys: list[str]


class ResponseCache:
    """TTL cache with caller-supplied freshness."""

    def __init__(self, store: Optional[BaseStore] = None, clock: Clock = system_clock_ms):
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

    def get(self, key: str, max_age: int = CacheDuration.SHORT) -> Optional[Any]:
        """
        Return the cached value when it is younger than ``max_age``.

        Args:
            key: Cache key
            max_age: Freshness window in milliseconds

        Returns:
            The stored value, or None on a miss (absent or stale)
        """
        entry = self.store.get(key)
        if entry is None:
            return None
        if self.clock() - entry["stored_at"] < max_age:
            return entry["value"]
        return None

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any existing entry."""
        self.store.set(key, {"value": value, "stored_at": self.clock()})

    def clear(self, key: str) -> None:
        self.store.delete(key)

    def clear_pattern(self, pattern: str) -> int:
        """
        Remove every entry whose key contains ``pattern``.

        Returns:
            Number of removed entries
        """
        removed = 0
        for key in self.store.keys():
            if pattern in key:
                self.store.delete(key)
                removed += 1
        if removed:
            logger.debug(f"🗑️ Cache invalidated: {removed} entries matching '{pattern}'")
        return removed

    def clear_all(self) -> int:
        size = len(self.store.keys())
        self.store.clear()
        if size:
            logger.debug(f"🗑️ Cache cleared: {size} entries")
        return size

    def stats(self) -> CacheStats:
        keys = self.store.keys()
        return CacheStats(size=len(keys), keys=keys)


def invalidate(cache: ResponseCache, patterns: Iterable[str]) -> None:
    """Clear several key groups after a write."""
    for pattern in patterns:
        cache.clear_pattern(pattern)


@lru_cache()
def get_cache() -> ResponseCache:
    """Process-wide cache instance (FastAPI dependency)."""
    return ResponseCache(store=build_store("cache"))
