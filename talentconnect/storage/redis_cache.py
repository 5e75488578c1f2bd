from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Tuple

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

REVOKED_TOKEN_PREFIX = "auth:revoked:"
RATE_LIMIT_PREFIX = "rate:"


def revoked_token_key(token: str) -> str:
    return f"{REVOKED_TOKEN_PREFIX}{token}"


def rate_limit_key(scope: str, client_id: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{scope}:{client_id}"


class RedisCache:
    """Thin Redis wrapper for token revocation and rate-limit counters."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Fixed window: the first hit in a window sets the expiry, later hits only
    # increment. A key that lost its TTL is re-armed so it cannot live forever.
    _FIXED_WINDOW_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('TTL', KEYS[1])
if ttl < 0 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {current, ttl}
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        max_retries: int = 3,
        backoff_base: float = 0.05,
        backoff_cap: float = 2.0,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        retry = Retry(ExponentialBackoff(cap=backoff_cap, base=backoff_base), max_retries)
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            retry=retry,
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
        )
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        from redis import Redis

        # Short-lived sync client so the async pool is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def hit_fixed_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Count one hit against ``key``; returns (hits in window, seconds left)."""
        count, ttl = await self._fixed_window(keys=[key], args=[int(window_seconds)])
        return int(count), max(int(ttl), 0)

    async def revoke_token(self, token: str, ttl_seconds: int) -> bool:
        """Write the revocation entry; True only if this call created it."""
        if ttl_seconds <= 0:
            return False
        created = await self.client.set(
            revoked_token_key(token), "1", ex=int(ttl_seconds), nx=True
        )
        return bool(created)

    async def is_token_revoked(self, token: str) -> bool:
        return bool(await self.client.exists(revoked_token_key(token)))

    async def close(self) -> None:
        """Close the Redis connection pool. Call when shutting down."""
        await self.client.aclose()


class MemoryCache:
    """In-process stand-in for RedisCache, used in tests and local development.

    Same key layout and expiry semantics as RedisCache; entries are held in a
    dict guarded by a lock and expire against ``clock``. Reads drop the entry
    they hit once expired; writes sweep the whole dict at most once per
    ``sweep_interval`` seconds.
    """

    def __init__(
        self, *, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at)
        self._entries: Dict[str, Tuple[object, float]] = {}
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def verify_connection(self) -> None:
        return None

    def _live(self, key: str, now: float):
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            self._entries.pop(key, None)
            return None
        return entry

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def hit_fixed_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            entry = self._live(key, now)
            if entry is None:
                expires_at = now + window_seconds
                count = 1
            else:
                count = int(entry[0]) + 1
                expires_at = entry[1]
            self._entries[key] = (count, expires_at)
            return count, max(int(round(expires_at - now)), 0)

    async def revoke_token(self, token: str, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            return False
        key = revoked_token_key(token)
        with self._lock:
            now = self._clock()
            self._sweep(now)
            if self._live(key, now) is not None:
                return False
            self._entries[key] = ("1", now + ttl_seconds)
            return True

    async def is_token_revoked(self, token: str) -> bool:
        with self._lock:
            return self._live(revoked_token_key(token), self._clock()) is not None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = [
    "MemoryCache",
    "RedisCache",
    "rate_limit_key",
    "revoked_token_key",
]
