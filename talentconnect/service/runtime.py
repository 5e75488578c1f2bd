from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urlparse, urlunparse

from talentconnect.config import Settings, get_settings
from talentconnect.logging import get_logger
from talentconnect.service.auth import AuthService
from talentconnect.service.projects import ProjectService
from talentconnect.service.rate_limit import RateLimiter
from talentconnect.service.tokens import TokenIssuer
from talentconnect.storage.memory import MemoryStore
from talentconnect.storage.postgres import PostgresStore
from talentconnect.storage.redis_cache import MemoryCache, RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        netloc = f"{parsed.username or ''}:***@{netloc}"
        return urlunparse(
            (
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            )
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds the store, cache and services for one application instance.

    Built in the FastAPI lifespan and kept on ``app.state``; ``connect`` runs
    at startup and ``close`` at shutdown.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = None
        self.cache = None
        self.tokens = TokenIssuer(
            self.settings.jwt_secret,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
            leeway_seconds=self.settings.token_leeway_seconds,
        )
        self.auth: Optional[AuthService] = None
        self.projects: Optional[ProjectService] = None
        self.rate_limiter: Optional[RateLimiter] = None

    @property
    def allows_fallback(self) -> bool:
        return self.settings.test_mode or self.settings.allow_redis_fallback_dev

    async def connect(self) -> None:
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
            environment=self.settings.environment.value,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            if self.settings.use_memory_store:
                self.store = MemoryStore()
            else:
                self.store = await asyncio.to_thread(
                    PostgresStore,
                    self.settings.database_url,
                    max_size=self.settings.database_pool_max_size,
                    connect_timeout=self.settings.database_connect_timeout,
                    statement_timeout_ms=self.settings.database_statement_timeout_ms,
                    pool_timeout=self.settings.database_pool_timeout,
                )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache = await self._connect_cache()
        self.auth = AuthService(self.store, self.cache, self.tokens)
        self.projects = ProjectService(self.store)
        self.rate_limiter = RateLimiter(self.cache, self.settings.rate_limit_policies())
        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=isinstance(self.cache, RedisCache),
        )

    async def _connect_cache(self):
        redis_error: Exception | None = None
        if self.settings.redis_url:
            cache = RedisCache(
                self.settings.redis_url,
                socket_timeout=self.settings.redis_socket_timeout,
                max_retries=self.settings.redis_max_retries,
                backoff_base=self.settings.redis_backoff_base,
                backoff_cap=self.settings.redis_backoff_cap,
            )
            try:
                await asyncio.to_thread(cache.verify_connection)
                return cache
            except Exception as exc:
                redis_error = exc
                await cache.close()

        if not self.allows_fallback:
            raise RuntimeError(
                "Redis is required for token revocation and rate limits; start Redis "
                "or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=(
                f"Running without Redis under {fallback_mode}; token revocations and "
                "rate-limit counters are in-memory only."
            ),
            mode=fallback_mode,
        )
        return MemoryCache()

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if self.store is not None:
            await asyncio.to_thread(self.store.close)
        logger.info("runtime_closed")
