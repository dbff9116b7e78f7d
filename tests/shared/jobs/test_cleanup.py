"""Tests for the periodic maintenance jobs."""

import asyncio
from datetime import timedelta

from sqlalchemy import func, select

from matcha_auth.config.settings import settings
from matcha_auth.database.base import utcnow
from matcha_auth.features.auth.models import RefreshToken
from matcha_auth.features.auth.refresh_tokens import RefreshSessionManager
from matcha_auth.features.user.action_tokens import ActionToken, ActionTokenPurpose, ActionTokenService
from matcha_auth.features.user.models import User
from matcha_auth.shared.jobs.cleanup import (
    cleanup_unverified_accounts,
    run_periodically,
    run_token_cleanup,
    start_background_jobs,
    stop_background_jobs,
)


class TestTokenCleanup:
    async def test_removes_only_dead_tokens(self, session, make_user):
        user = await make_user()

        await RefreshSessionManager.issue(session, user.id)
        expired = await RefreshSessionManager.issue(session, user.id)
        used = await ActionTokenService.issue(session, user.id, ActionTokenPurpose.EMAIL_VERIFICATION, 24)
        await ActionTokenService.consume(session, used, ActionTokenPurpose.EMAIL_VERIFICATION)
        await ActionTokenService.issue(session, user.id, ActionTokenPurpose.PASSWORD_RESET, 1)
        await session.commit()

        result = await session.execute(select(RefreshToken).where(RefreshToken.id == expired.session_id))
        result.scalar_one().expires_at = utcnow() - timedelta(seconds=1)
        await session.commit()

        outcome = await run_token_cleanup()

        assert outcome.action_tokens == 1
        assert outcome.refresh_tokens == 1
        assert outcome.total == 2

        remaining_sessions = await session.execute(select(func.count()).select_from(RefreshToken))
        assert remaining_sessions.scalar_one() == 1
        remaining_tokens = await session.execute(select(func.count()).select_from(ActionToken))
        assert remaining_tokens.scalar_one() == 1

    async def test_nothing_to_clean(self, db_engine):
        outcome = await run_token_cleanup()
        assert outcome.total == 0


class TestUnverifiedAccountCleanup:
    async def test_deletes_only_old_unverified_accounts(self, session, make_user):
        old_unverified = await make_user(email_verified=False, created_at=utcnow() - timedelta(days=8))
        recent_unverified = await make_user(email_verified=False)
        old_verified = await make_user(created_at=utcnow() - timedelta(days=30))

        deleted = await cleanup_unverified_accounts(max_age_days=7)

        assert deleted == 1
        result = await session.execute(select(User.id))
        remaining = set(result.scalars().all())
        assert remaining == {recent_unverified.id, old_verified.id}
        assert old_unverified.id not in remaining


class TestScheduling:
    async def test_failures_do_not_stop_the_loop(self):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")

        task = asyncio.create_task(run_periodically("flaky", flaky, initial_delay=0, interval=0.01))
        await asyncio.sleep(0.1)
        await stop_background_jobs([task])

        assert calls >= 2
        assert task.cancelled()

    async def test_start_and_stop(self, db_engine):
        tasks = start_background_jobs(settings)
        assert {task.get_name() for task in tasks} == {"token_cleanup", "unverified_account_cleanup"}

        await stop_background_jobs(tasks)
        assert all(task.done() for task in tasks)
