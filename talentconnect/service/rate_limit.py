from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from redis.exceptions import RedisError

from talentconnect.config import RateLimitPolicy
from talentconnect.logging import get_logger
from talentconnect.service.errors import RateLimitedError
from talentconnect.storage.redis_cache import rate_limit_key

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


class RateLimiter:
    """Fixed-window admission control, one counter per (scope, client)."""

    def __init__(self, cache, policies: Mapping[str, RateLimitPolicy]) -> None:
        self.cache = cache
        self.policies = dict(policies)

    def policy(self, scope: str) -> RateLimitPolicy:
        try:
            return self.policies[scope]
        except KeyError:
            raise ValueError(f"unknown rate limit scope: {scope}") from None

    async def hit(self, scope: str, client_id: str) -> RateLimitDecision:
        policy = self.policy(scope)
        if policy.limit <= 0:
            return RateLimitDecision(True, policy.limit, policy.limit, 0)
        key = rate_limit_key(scope, client_id)
        try:
            count, reset_seconds = await self.cache.hit_fixed_window(
                key, policy.window_seconds
            )
        except (RedisError, OSError) as exc:
            # Counter unavailable: admit rather than block all traffic
            logger.warning(
                "rate_limit_check_failed",
                scope=scope,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return RateLimitDecision(True, policy.limit, policy.limit, policy.window_seconds)
        return RateLimitDecision(
            allowed=count <= policy.limit,
            limit=policy.limit,
            remaining=max(policy.limit - count, 0),
            reset_seconds=reset_seconds or policy.window_seconds,
        )

    async def enforce(self, scope: str, client_id: str) -> RateLimitDecision:
        decision = await self.hit(scope, client_id)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                scope=scope,
                client=client_id,
                limit=decision.limit,
                reset_seconds=decision.reset_seconds,
            )
            raise RateLimitedError(
                self.policy(scope).message,
                retry_after=decision.reset_seconds,
                limit=decision.limit,
                detail={"limit": decision.limit, "resetSeconds": decision.reset_seconds},
            )
        return decision


__all__ = ["RateLimitDecision", "RateLimitPolicy", "RateLimiter"]
