"""Rate limiting and timing normalization middlewares.

Both read their collaborators from ``app.state``:

- ``rate_limiter``: a ``RateLimiter``, or None to disable limiting
- ``route_tiers``: a ``RouteTierTable``
- ``timing_floor_seconds``: minimum duration of SENSITIVE and AUTH responses
"""

import asyncio
import logging
import time

from fastapi import Request, status
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from .limiter import RateTier

logger = logging.getLogger(__name__)

PADDED_TIERS = frozenset({RateTier.SENSITIVE, RateTier.AUTH})


def _tier_for(request: Request) -> RateTier:
    table = getattr(request.app.state, "route_tiers", None)
    if table is None:
        return RateTier.GENERAL
    return table.tier_for(request.url.path)


async def rate_limit_middleware(request: Request, call_next):
    """Reject requests over the client's allowance before any handler runs."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None or request.method == "OPTIONS":
        return await call_next(request)

    tier = _tier_for(request)
    client_key = get_remote_address(request)
    decision = await limiter.acquire(client_key, tier)

    if not decision.allowed:
        logger.warning(f"Rate limit exceeded for {client_key} on {request.url.path} ({tier} tier)")
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Rate limit exceeded"},
            headers={"Retry-After": str(decision.retry_after)},
        )

    return await call_next(request)


async def timing_normalization_middleware(request: Request, call_next):
    """Pad SENSITIVE and AUTH tier responses to a fixed minimum duration.

    Existing and missing accounts then take the same observable time,
    whichever path the handler took. Handler errors are padded too.
    """
    started = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        floor = getattr(request.app.state, "timing_floor_seconds", 0.0)
        if floor > 0 and _tier_for(request) in PADDED_TIERS:
            remaining = floor - (time.perf_counter() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)
