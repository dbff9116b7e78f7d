"""Single-use, expiring action tokens (email verification, password reset).

The plaintext secret is only ever handed to the user (by email). The database
keeps its SHA-256 hash, so a leaked table cannot be replayed.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from matcha_auth.database.base import Base, utcnow

logger = logging.getLogger(__name__)


class ActionTokenPurpose(StrEnum):
    """What a token authorises."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class ActionToken(Base):
    """A one-shot token bound to a user and a purpose."""

    __tablename__ = "action_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    purpose: Mapped[ActionTokenPurpose] = mapped_column(
        Enum(ActionTokenPurpose, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


def generate_token() -> str:
    """Return a fresh secret: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class ActionTokenService:
    """Issue and consume action tokens."""

    @staticmethod
    async def issue(session: AsyncSession, user_id: int, purpose: ActionTokenPurpose, ttl_hours: int) -> str:
        """Issue a new token, superseding any unused token of the same purpose.

        The insert is flushed into the caller's transaction; the caller commits.

        Args:
            session: Database session
            user_id: Owner of the token
            purpose: What the token authorises
            ttl_hours: Lifetime of the token

        Returns:
            The plaintext secret (64 hex characters)

        """
        now = utcnow()

        # At most one valid token per (user, purpose)
        await session.execute(
            update(ActionToken)
            .where(
                ActionToken.user_id == user_id,
                ActionToken.purpose == purpose,
                ActionToken.used_at.is_(None),
            )
            .values(used_at=now)
        )

        secret = generate_token()
        session.add(
            ActionToken(
                user_id=user_id,
                purpose=purpose,
                token_hash=hash_token(secret),
                expires_at=now + timedelta(hours=ttl_hours),
                created_at=now,
            )
        )
        await session.flush()

        logger.info(f"Issued {purpose} token for user {user_id}")
        return secret

    @staticmethod
    async def consume(session: AsyncSession, secret: str, purpose: ActionTokenPurpose) -> int | None:
        """Atomically mark a token used and return its owner.

        The check and the mark happen in one conditional UPDATE, so two
        concurrent consumers of the same secret cannot both succeed.

        Returns:
            The user id, or None when the token is unknown, used, superseded,
            expired or for another purpose

        """
        now = utcnow()
        result = await session.execute(
            update(ActionToken)
            .where(
                ActionToken.token_hash == hash_token(secret),
                ActionToken.purpose == purpose,
                ActionToken.used_at.is_(None),
                ActionToken.expires_at > now,
            )
            .values(used_at=now)
            .returning(ActionToken.user_id)
        )
        user_id = result.scalar_one_or_none()

        if user_id is None:
            logger.info(f"Rejected {purpose} token: unknown, used or expired")
        return user_id

    @staticmethod
    async def cleanup_expired(session: AsyncSession) -> int:
        """Delete expired and used tokens. Returns the number of rows removed."""
        result = await session.execute(
            delete(ActionToken).where(or_(ActionToken.expires_at <= utcnow(), ActionToken.used_at.is_not(None)))
        )
        return result.rowcount or 0
