"""Periodic maintenance jobs.

Expired rows are already harmless (every lookup checks expiry); these jobs
only keep the tables small. They are idempotent and a failed run is logged
and retried on the next tick.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete

from matcha_auth.config.settings import Settings
from matcha_auth.database.base import utcnow
from matcha_auth.database.client import get_session
from matcha_auth.features.auth.refresh_tokens import RefreshSessionManager
from matcha_auth.features.user.action_tokens import ActionTokenService
from matcha_auth.features.user.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCleanupResult:
    action_tokens: int
    refresh_tokens: int

    @property
    def total(self) -> int:
        return self.action_tokens + self.refresh_tokens


async def run_token_cleanup() -> TokenCleanupResult:
    """Delete expired or used action tokens and expired refresh sessions."""
    async with get_session() as session:
        action_tokens = await ActionTokenService.cleanup_expired(session)
        refresh_tokens = await RefreshSessionManager.cleanup_expired(session)

    result = TokenCleanupResult(action_tokens=action_tokens, refresh_tokens=refresh_tokens)
    if result.total:
        logger.info(
            f"Token cleanup complete: {result.action_tokens} action tokens, "
            f"{result.refresh_tokens} refresh tokens ({result.total} total)"
        )
    else:
        logger.debug("Token cleanup complete: no expired tokens found")
    return result


async def cleanup_unverified_accounts(max_age_days: int = 7) -> int:
    """Delete accounts whose email was never verified within ``max_age_days``."""
    cutoff = utcnow() - timedelta(days=max_age_days)
    async with get_session() as session:
        result = await session.execute(
            delete(User).where(User.email_verified.is_(False), User.created_at < cutoff)
        )
        deleted = result.rowcount or 0

    if deleted:
        logger.info(f"Cleaned up {deleted} unverified accounts older than {max_age_days} days")
    else:
        logger.debug("No old unverified accounts to clean up")
    return deleted


async def run_periodically(
    name: str,
    job: Callable[[], Awaitable[object]],
    initial_delay: float,
    interval: float,
) -> None:
    """Run ``job`` after ``initial_delay`` seconds, then every ``interval`` seconds.

    Exceptions are logged and never stop the loop; cancellation does.
    """
    await asyncio.sleep(initial_delay)
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Background job {name} failed")
        await asyncio.sleep(interval)


def start_background_jobs(settings: Settings) -> list[asyncio.Task]:
    """Schedule the cleanup jobs on the running loop."""
    tasks = [
        asyncio.create_task(
            run_periodically(
                "token_cleanup",
                run_token_cleanup,
                settings.token_cleanup_initial_delay_seconds,
                settings.token_cleanup_interval_seconds,
            ),
            name="token_cleanup",
        ),
        asyncio.create_task(
            run_periodically(
                "unverified_account_cleanup",
                lambda: cleanup_unverified_accounts(settings.unverified_account_max_age_days),
                settings.unverified_cleanup_initial_delay_seconds,
                settings.unverified_cleanup_interval_seconds,
            ),
            name="unverified_account_cleanup",
        ),
    ]
    logger.info(f"Started {len(tasks)} background jobs")
    return tasks


async def stop_background_jobs(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background jobs stopped")
