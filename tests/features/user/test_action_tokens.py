"""Tests for single-use action tokens."""

import asyncio
from datetime import timedelta

from sqlalchemy import select, update

from matcha_auth.database.base import utcnow
from matcha_auth.features.user.action_tokens import (
    ActionToken,
    ActionTokenPurpose,
    ActionTokenService,
    generate_token,
    hash_token,
)

VERIFY = ActionTokenPurpose.EMAIL_VERIFICATION
RESET = ActionTokenPurpose.PASSWORD_RESET


class TestIssue:
    async def test_token_is_64_hex_chars_and_stored_hashed(self, session, make_user):
        user = await make_user()
        secret = await ActionTokenService.issue(session, user.id, VERIFY, ttl_hours=24)
        await session.commit()

        assert len(secret) == 64
        int(secret, 16)
        result = await session.execute(select(ActionToken).where(ActionToken.user_id == user.id))
        row = result.scalar_one()
        assert row.token_hash == hash_token(secret)
        assert row.used_at is None

    def test_generated_tokens_are_unique(self):
        assert generate_token() != generate_token()

    async def test_new_token_supersedes_previous_one(self, session, make_user):
        user = await make_user()
        first = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        second = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.commit()

        assert await ActionTokenService.consume(session, first, RESET) is None
        assert await ActionTokenService.consume(session, second, RESET) == user.id

    async def test_supersession_is_per_purpose(self, session, make_user):
        user = await make_user()
        verify_token = await ActionTokenService.issue(session, user.id, VERIFY, ttl_hours=24)
        await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.commit()

        assert await ActionTokenService.consume(session, verify_token, VERIFY) == user.id


class TestConsume:
    async def test_consume_once(self, session, make_user):
        user = await make_user()
        secret = await ActionTokenService.issue(session, user.id, VERIFY, ttl_hours=24)
        await session.commit()

        assert await ActionTokenService.consume(session, secret, VERIFY) == user.id
        await session.commit()
        assert await ActionTokenService.consume(session, secret, VERIFY) is None

    async def test_wrong_purpose_is_rejected(self, session, make_user):
        user = await make_user()
        secret = await ActionTokenService.issue(session, user.id, VERIFY, ttl_hours=24)
        await session.commit()

        assert await ActionTokenService.consume(session, secret, RESET) is None
        # Still usable for its own purpose
        assert await ActionTokenService.consume(session, secret, VERIFY) == user.id

    async def test_expired_token_is_rejected(self, session, make_user):
        user = await make_user()
        secret = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.execute(
            update(ActionToken)
            .where(ActionToken.token_hash == hash_token(secret))
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await session.commit()

        assert await ActionTokenService.consume(session, secret, RESET) is None

    async def test_unknown_token_is_rejected(self, session, db_engine):
        assert await ActionTokenService.consume(session, generate_token(), VERIFY) is None

    async def test_concurrent_consumers_only_one_wins(self, session, session_factory, make_user):
        user = await make_user()
        secret = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.commit()

        async def consume():
            async with session_factory() as s:
                result = await ActionTokenService.consume(s, secret, RESET)
                await s.commit()
                return result

        results = await asyncio.gather(consume(), consume())

        assert sorted(results, key=lambda r: r is None) == [user.id, None]


class TestCleanup:
    async def test_removes_used_and_expired(self, session, make_user):
        user = await make_user()
        used = await ActionTokenService.issue(session, user.id, VERIFY, ttl_hours=24)
        expired = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.execute(
            update(ActionToken)
            .where(ActionToken.token_hash == hash_token(expired))
            .values(expires_at=utcnow() - timedelta(hours=2))
        )
        await session.commit()
        await ActionTokenService.consume(session, used, VERIFY)
        live = await ActionTokenService.issue(session, user.id, RESET, ttl_hours=1)
        await session.commit()

        # The expired reset token was superseded (used) by the live one as well
        assert await ActionTokenService.cleanup_expired(session) == 2
        await session.commit()
        assert await ActionTokenService.consume(session, live, RESET) == user.id
