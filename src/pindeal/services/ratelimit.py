"""Per-client fixed-window rate limiting backed by Redis."""

from __future__ import annotations

import logging

import redis.asyncio as redis

log = logging.getLogger(__name__)


class RedisRateLimiter:
    """Counts requests per client in a fixed window.

    Each window is one Redis key, ``rate_limit:<client>``, incremented on
    every request and expiring with the window. When Redis is unreachable
    requests are allowed.
    """

    def __init__(
        self,
        client: redis.Redis,
        requests_per_minute: int = 100,
        window_seconds: int = 60,
    ) -> None:
        self._redis = client
        self._limit = requests_per_minute
        self._window = window_seconds

    @classmethod
    def from_url(
        cls, url: str, requests_per_minute: int = 100, window_seconds: int = 60
    ) -> RedisRateLimiter:
        return cls(redis.from_url(url), requests_per_minute, window_seconds)

    @property
    def window_seconds(self) -> int:
        return self._window

    async def allow(self, client_id: str) -> bool:
        key = f"rate_limit:{client_id}"
        try:
            # MULTI/EXEC so the counter never exists without a TTL
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self._window, nx=True)
                count, _ = await pipe.execute()
        except Exception as exc:
            log.warning("Rate limiter unavailable, allowing %s: %s", client_id, exc)
            return True
        return count <= self._limit

    async def close(self) -> None:
        await self._redis.aclose()
