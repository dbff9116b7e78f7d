"""Refresh session manager.

A refresh token is an opaque one-shot rotation key. Each successful rotation
deletes the presented row and inserts a new one in the same transaction, so a
secret that has already been rotated no longer matches anything. Presenting it
again is indistinguishable from presenting an unknown token, and both are
logged as a possible theft signal.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import NoReturn

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.config.settings import settings
from matcha_auth.database.base import as_utc, utcnow

from .exceptions import InvalidRefreshTokenException
from .models import RefreshToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedRefreshToken:
    secret: str
    session_id: int


@dataclass(frozen=True)
class RotatedRefreshToken:
    user_id: int
    secret: str


def generate_refresh_token() -> str:
    """Return 32 random bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def hash_refresh_token(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


def _truncate(value: str | None, length: int) -> str | None:
    if value is None:
        return None
    return value[:length]


async def _reject_reuse(session: AsyncSession) -> NoReturn:
    await session.rollback()
    logger.warning("refresh_token_reuse_or_unknown: presented refresh token matches no active session")
    raise InvalidRefreshTokenException()


class RefreshSessionManager:
    """Issue, rotate and revoke refresh sessions."""

    @staticmethod
    async def issue(
        session: AsyncSession,
        user_id: int,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> IssuedRefreshToken:
        """Create a new refresh session within the caller's transaction.

        Args:
            session: Database session
            user_id: Owner of the session
            device_info: Requester's User-Agent header (optional)
            ip_address: Requester's IP address (optional)

        Returns:
            The plaintext secret and the id of the stored row

        """
        now = utcnow()
        secret = generate_refresh_token()
        row = RefreshToken(
            user_id=user_id,
            token_hash=hash_refresh_token(secret),
            expires_at=now + timedelta(days=settings.refresh_token_expiry_days),
            created_at=now,
            last_used_at=now,
            device_info=_truncate(device_info, 500),
            ip_address=_truncate(ip_address, 45),
        )
        session.add(row)
        await session.flush()

        logger.info(f"Issued refresh session {row.id} for user {user_id}")
        return IssuedRefreshToken(secret=secret, session_id=row.id)

    @staticmethod
    async def rotate(session: AsyncSession, secret: str) -> RotatedRefreshToken:
        """Exchange a refresh secret for a new one.

        Locks the matching row, deletes it and inserts its successor, then
        commits. Either both happen or neither does. The delete must remove
        exactly one row; on backends without row locks (SQLite) a concurrent
        rotation of the same secret loses there and fails like a reuse.

        Raises:
            InvalidRefreshTokenException: If the secret is unknown, already
                rotated, revoked or expired

        """
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(secret))
            .with_for_update()
        )
        result = await session.execute(stmt)
        current = result.scalar_one_or_none()

        if current is None:
            await _reject_reuse(session)

        session_id = current.id
        user_id = current.user_id
        now = utcnow()

        if as_utc(current.expires_at) <= now:
            await session.execute(delete(RefreshToken).where(RefreshToken.id == session_id))
            await session.commit()
            logger.info(f"Refresh session {session_id} for user {user_id} expired")
            raise InvalidRefreshTokenException()

        new_secret = generate_refresh_token()
        successor = RefreshToken(
            user_id=user_id,
            token_hash=hash_refresh_token(new_secret),
            expires_at=now + timedelta(days=settings.refresh_token_expiry_days),
            created_at=now,
            last_used_at=now,
            device_info=current.device_info,
            ip_address=current.ip_address,
        )

        deleted = await session.execute(delete(RefreshToken).where(RefreshToken.id == session_id))
        if deleted.rowcount != 1:
            await _reject_reuse(session)

        session.add(successor)
        await session.commit()

        logger.info(f"Rotated refresh session for user {user_id}")
        return RotatedRefreshToken(user_id=user_id, secret=new_secret)

    @staticmethod
    async def revoke(session: AsyncSession, secret: str) -> bool:
        """Delete the session holding ``secret``. Returns False if none matched."""
        result = await session.execute(
            delete(RefreshToken).where(RefreshToken.token_hash == hash_refresh_token(secret))
        )
        return (result.rowcount or 0) > 0

    @staticmethod
    async def revoke_all(session: AsyncSession, user_id: int) -> int:
        """Delete every session of a user (password change or reset)."""
        result = await session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        count = result.rowcount or 0
        logger.info(f"Revoked {count} refresh sessions for user {user_id}")
        return count

    @staticmethod
    async def cleanup_expired(session: AsyncSession) -> int:
        result = await session.execute(delete(RefreshToken).where(RefreshToken.expires_at <= utcnow()))
        return result.rowcount or 0
