"""Token bucket rate limiter.

NOT PROCESS-SAFE: buckets live in process memory. With several workers or
instances each one limits independently, so the effective limit is
multiplied by the number of processes.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class RateTier(StrEnum):
    """Rate limit tier of a route, strictest first."""

    SENSITIVE = "sensitive"
    AUTH = "auth"
    GENERAL = "general"


@dataclass(frozen=True)
class TierPolicy:
    per_second: float
    burst: int


DEFAULT_POLICIES: dict[RateTier, TierPolicy] = {
    RateTier.SENSITIVE: TierPolicy(per_second=2.0, burst=3),
    RateTier.AUTH: TierPolicy(per_second=5.0, burst=5),
    RateTier.GENERAL: TierPolicy(per_second=10.0, burst=20),
}


@dataclass
class TokenBucket:
    """Continuously refilling bucket, capped at ``capacity``."""

    capacity: int
    refill_rate: float
    tokens: float
    updated_at: float

    @classmethod
    def full(cls, policy: TierPolicy, now: float) -> "TokenBucket":
        return cls(capacity=policy.burst, refill_rate=policy.per_second, tokens=float(policy.burst), updated_at=now)

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_rate)
        self.updated_at = now

    def try_take(self, now: float) -> bool:
        self.refill(now)
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    def seconds_until_available(self) -> float:
        """Time until one whole token is available, as of the last refill."""
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.refill_rate

    def is_full(self, now: float) -> bool:
        self.refill(now)
        return self.tokens >= self.capacity


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    """Buckets keyed by (client key, tier), guarded by one asyncio lock.

    Full buckets are indistinguishable from missing ones, so they are pruned
    every ``prune_interval`` seconds to bound memory.
    """

    def __init__(
        self,
        policies: dict[RateTier, TierPolicy] | None = None,
        clock: Callable[[], float] = time.monotonic,
        prune_interval: float = 60.0,
    ):
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)
        self._clock = clock
        self._prune_interval = prune_interval
        self._buckets: dict[tuple[str, RateTier], TokenBucket] = {}
        self._lock = asyncio.Lock()
        self._last_prune = clock()

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        """Build a limiter from the ``rate_limit_*`` settings."""
        return cls(
            policies={
                RateTier.SENSITIVE: TierPolicy(
                    settings.rate_limit_sensitive_per_second, settings.rate_limit_sensitive_burst
                ),
                RateTier.AUTH: TierPolicy(settings.rate_limit_auth_per_second, settings.rate_limit_auth_burst),
                RateTier.GENERAL: TierPolicy(
                    settings.rate_limit_general_per_second, settings.rate_limit_general_burst
                ),
            }
        )

    async def acquire(self, key: str, tier: RateTier) -> RateLimitDecision:
        """Take one token from the bucket of ``key`` in ``tier``."""
        now = self._clock()

        async with self._lock:
            if now - self._last_prune >= self._prune_interval:
                self._prune(now)
                self._last_prune = now

            bucket = self._buckets.get((key, tier))
            if bucket is None:
                bucket = TokenBucket.full(self.policies[tier], now)
                self._buckets[(key, tier)] = bucket

            if bucket.try_take(now):
                return RateLimitDecision(allowed=True)

            retry_after = max(1, math.ceil(bucket.seconds_until_available()))
            return RateLimitDecision(allowed=False, retry_after=retry_after)

    async def try_acquire(self, key: str, tier: RateTier) -> bool:
        return (await self.acquire(key, tier)).allowed

    def _prune(self, now: float) -> None:
        stale = [k for k, bucket in self._buckets.items() if bucket.is_full(now)]
        for k in stale:
            del self._buckets[k]
        if stale:
            logger.debug(f"Rate limiter pruned {len(stale)} idle buckets")

    def __len__(self) -> int:
        return len(self._buckets)


class RouteTierTable:
    """Maps request paths to rate tiers. Unlisted paths are GENERAL."""

    def __init__(self, routes: dict[str, RateTier] | None = None, default: RateTier = RateTier.GENERAL):
        self._routes: dict[str, RateTier] = {}
        self.default = default
        for path, tier in (routes or {}).items():
            self.add(path, tier)

    @staticmethod
    def _normalize(path: str) -> str:
        if len(path) > 1:
            return path.rstrip("/")
        return path

    def add(self, path: str, tier: RateTier) -> None:
        self._routes[self._normalize(path)] = tier

    def tier_for(self, path: str) -> RateTier:
        return self._routes.get(self._normalize(path), self.default)
