"""
Fixed-Window Rate Limiter

Per-key counters with a window reset timestamp. The window resets lazily
on the first request that arrives after it expired; there is no token
bucket and no sliding window.

With the default in-memory store every API process keeps its own
counters, so under horizontal scaling the limit is advisory. Switch
``CACHE_BACKEND`` to ``redis`` to share counters between processes.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Request

from lanchonete.core.cache import BaseStore, Clock, MemoryStore, build_store, system_clock_ms

logger = logging.getLogger(__name__)

CLIENT_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "x-client-ip")


@dataclass
class RateLimitResult:
    """Outcome of one rate-limit check."""
    allowed: bool
    remaining: int
    reset_in_ms: int

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up (for the Retry-After header)."""
        return max(1, -(-self.reset_in_ms // 1000))


class RateLimiter:
    """Fixed-window counter keyed by arbitrary strings."""

    def __init__(self, store: Optional[BaseStore] = None, clock: Clock = system_clock_ms):
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        """
        Count one request against ``key``.

        Args:
            key: Counter identity (usually route + client IP)
            window_ms: Window length in milliseconds
            max_requests: Requests allowed inside one window

        Returns:
            RateLimitResult with the decision, remaining quota and
            milliseconds until the window resets
        """
        now = self.clock()
        entry = self.store.get(key)

        if entry is None or now >= entry["reset_at"]:
            self.store.set(key, {"count": 1, "reset_at": now + window_ms})
            return RateLimitResult(
                allowed=True,
                remaining=max(0, max_requests - 1),
                reset_in_ms=window_ms,
            )

        count = entry["count"] + 1
        self.store.set(key, {"count": count, "reset_at": entry["reset_at"]})

        result = RateLimitResult(
            allowed=count <= max_requests,
            remaining=max(0, max_requests - count),
            reset_in_ms=max(0, entry["reset_at"] - now),
        )
        if not result.allowed:
            logger.warning(f"⛔ Rate limit exceeded for '{key}' ({count}/{max_requests})")
        return result

    def reset(self) -> None:
        self.store.clear()


def get_client_ip(request: Request) -> str:
    """
    Best-effort client address.

    Order: first entry of X-Forwarded-For, X-Real-IP, CF-Connecting-IP,
    X-Client-IP, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter instance (FastAPI dependency)."""
    return RateLimiter(store=build_store("ratelimit"))
