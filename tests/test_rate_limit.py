"""Tests for the fixed-window rate limiter and its in-memory counter."""

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from talentconnect.config import RateLimitPolicy
from talentconnect.service.errors import RateLimitedError
from talentconnect.service.rate_limit import RateLimiter
from talentconnect.storage.redis_cache import MemoryCache, rate_limit_key, revoked_token_key


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenCache:
    async def hit_fixed_window(self, key, window_seconds):
        raise RedisTimeoutError("timed out")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    policies = {
        "auth": RateLimitPolicy("auth", 3, 900, "Too many login attempts, please try again later"),
        "off": RateLimitPolicy("off", 0, 60),
    }
    return RateLimiter(MemoryCache(clock=clock), policies)


def test_key_layout():
    assert rate_limit_key("auth", "10.0.0.1") == "rate:auth:10.0.0.1"
    assert revoked_token_key("abc") == "auth:revoked:abc"


class TestFixedWindow:
    async def test_requests_up_to_ceiling_are_allowed(self, limiter):
        remaining = []
        for _ in range(3):
            decision = await limiter.enforce("auth", "client")
            remaining.append(decision.remaining)
        assert remaining == [2, 1, 0]

    async def test_request_over_ceiling_is_rejected(self, limiter):
        for _ in range(3):
            await limiter.enforce("auth", "client")

        with pytest.raises(RateLimitedError) as excinfo:
            await limiter.enforce("auth", "client")

        err = excinfo.value
        assert err.status_code == 429
        assert err.error_code == "RATE_LIMIT_EXCEEDED"
        assert err.message == "Too many login attempts, please try again later"
        assert err.limit == 3
        assert 0 < err.retry_after <= 900

    async def test_new_window_admits_again(self, limiter, clock):
        for _ in range(3):
            await limiter.enforce("auth", "client")
        with pytest.raises(RateLimitedError):
            await limiter.enforce("auth", "client")

        clock.now += 900
        decision = await limiter.enforce("auth", "client")
        assert decision.allowed
        assert decision.remaining == 2

    async def test_window_starts_at_first_request(self, limiter, clock):
        await limiter.enforce("auth", "client")
        clock.now += 600
        decision = await limiter.enforce("auth", "client")
        assert decision.reset_seconds == 300

    async def test_clients_are_counted_separately(self, limiter):
        for _ in range(3):
            await limiter.enforce("auth", "client-a")
        decision = await limiter.enforce("auth", "client-b")
        assert decision.allowed

    async def test_zero_limit_disables_scope(self, limiter):
        for _ in range(10):
            assert (await limiter.enforce("off", "client")).allowed

    async def test_unknown_scope_is_a_programming_error(self, limiter):
        with pytest.raises(ValueError):
            await limiter.enforce("nope", "client")

    async def test_cache_failure_admits_request(self):
        limiter = RateLimiter(BrokenCache(), {"api": RateLimitPolicy("api", 1, 60)})
        decision = await limiter.enforce("api", "client")
        assert decision.allowed


class TestMemoryCacheRevocation:
    async def test_revocation_expires_with_ttl(self, clock):
        cache = MemoryCache(clock=clock)
        await cache.revoke_token("tok", 30)
        assert await cache.is_token_revoked("tok")
        clock.now += 30
        assert not await cache.is_token_revoked("tok")

    async def test_non_positive_ttl_writes_nothing(self, clock):
        cache = MemoryCache(clock=clock)
        await cache.revoke_token("tok", 0)
        assert not await cache.is_token_revoked("tok")

    async def test_second_revocation_reports_existing_entry(self, clock):
        cache = MemoryCache(clock=clock)
        assert await cache.revoke_token("tok", 30) is True
        assert await cache.revoke_token("tok", 30) is False
        clock.now += 30
        assert await cache.revoke_token("tok", 30) is True


class TestMemoryCacheSweep:
    async def test_expired_counters_are_swept_on_write(self, clock):
        cache = MemoryCache(clock=clock, sweep_interval=60)
        for client in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            await cache.hit_fixed_window(rate_limit_key("api", client), 10)
        await cache.revoke_token("tok", 300)

        clock.now += 61
        await cache.hit_fixed_window(rate_limit_key("api", "10.0.0.9"), 10)

        assert set(cache._entries) == {
            revoked_token_key("tok"),
            rate_limit_key("api", "10.0.0.9"),
        }

    async def test_no_sweep_before_interval(self, clock):
        cache = MemoryCache(clock=clock, sweep_interval=60)
        await cache.hit_fixed_window(rate_limit_key("api", "10.0.0.1"), 10)

        clock.now += 30
        await cache.hit_fixed_window(rate_limit_key("api", "10.0.0.2"), 10)

        assert rate_limit_key("api", "10.0.0.1") in cache._entries
