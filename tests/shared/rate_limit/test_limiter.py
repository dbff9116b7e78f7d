"""Tests for the token bucket rate limiter."""

import pytest

from matcha_auth.main import build_route_tiers
from matcha_auth.shared.rate_limit.limiter import (
    RateLimiter,
    RateTier,
    RouteTierTable,
    TierPolicy,
    TokenBucket,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(clock=clock)


class TestTokenBucket:
    def test_starts_full_and_caps_at_capacity(self):
        bucket = TokenBucket.full(TierPolicy(per_second=1.0, burst=2), now=0.0)
        bucket.refill(now=100.0)
        assert bucket.tokens == 2.0

    def test_seconds_until_available(self):
        bucket = TokenBucket(capacity=1, refill_rate=4.0, tokens=0.0, updated_at=0.0)
        assert bucket.seconds_until_available() == pytest.approx(0.25)


class TestRateLimiter:
    async def test_burst_then_reject(self, limiter):
        # AUTH: burst 5
        for _ in range(5):
            assert await limiter.try_acquire("1.2.3.4", RateTier.AUTH)

        decision = await limiter.acquire("1.2.3.4", RateTier.AUTH)
        assert not decision.allowed
        assert decision.retry_after >= 1

    async def test_sensitive_tier_is_strictest(self, limiter):
        results = [await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE) for _ in range(4)]
        assert results == [True, True, True, False]

    async def test_refill_over_time(self, limiter, clock):
        for _ in range(3):
            await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)
        assert not await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)

        # 2 tokens per second
        clock.advance(0.5)
        assert await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)
        assert not await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)

    async def test_retry_after_rounds_up(self, limiter):
        for _ in range(3):
            await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)

        decision = await limiter.acquire("1.2.3.4", RateTier.SENSITIVE)
        assert decision.retry_after == 1

    async def test_keys_and_tiers_are_independent(self, limiter):
        for _ in range(3):
            await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)

        assert not await limiter.try_acquire("1.2.3.4", RateTier.SENSITIVE)
        assert await limiter.try_acquire("5.6.7.8", RateTier.SENSITIVE)
        assert await limiter.try_acquire("1.2.3.4", RateTier.GENERAL)

    async def test_full_buckets_are_pruned(self, limiter, clock):
        await limiter.try_acquire("1.2.3.4", RateTier.GENERAL)
        await limiter.try_acquire("5.6.7.8", RateTier.AUTH)
        assert len(limiter) == 2

        clock.advance(61)
        await limiter.try_acquire("9.9.9.9", RateTier.GENERAL)

        assert len(limiter) == 1

    async def test_custom_policy(self, clock):
        limiter = RateLimiter(policies={RateTier.GENERAL: TierPolicy(per_second=1.0, burst=1)}, clock=clock)
        assert await limiter.try_acquire("k", RateTier.GENERAL)
        assert not await limiter.try_acquire("k", RateTier.GENERAL)
        # Other tiers keep their defaults
        assert limiter.policies[RateTier.AUTH].burst == 5


class TestRouteTierTable:
    def test_lookup_and_default(self):
        table = RouteTierTable({"/users/login": RateTier.AUTH})
        assert table.tier_for("/users/login") == RateTier.AUTH
        assert table.tier_for("/users/login/") == RateTier.AUTH
        assert table.tier_for("/auth/me") == RateTier.GENERAL

    def test_app_routes(self):
        table = build_route_tiers("/api")
        assert table.tier_for("/api/users/request-password-reset") == RateTier.SENSITIVE
        assert table.tier_for("/api/users/resend-verification") == RateTier.SENSITIVE
        assert table.tier_for("/api/users/login") == RateTier.AUTH
        assert table.tier_for("/api/users/me/change-password") == RateTier.AUTH
        assert table.tier_for("/api/auth/refresh") == RateTier.GENERAL
