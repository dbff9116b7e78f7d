"""Authentication service layer."""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.config.settings import settings
from matcha_auth.features.user.models import FederatedCredential, User

from .exceptions import InvalidCredentialsException, InvalidRefreshTokenException
from .jwt_utils import create_access_token
from .password import verify_password_or_dummy
from .refresh_tokens import RefreshSessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str
    expires_in: int


class AuthService:
    """Service for credential checks and session minting."""

    @staticmethod
    async def authenticate(session: AsyncSession, email: str, password: str) -> User:
        """Authenticate a user by email and password.

        Unknown email, missing password, wrong password and unverified email
        all raise the same exception after the same amount of hashing work.

        Raises:
            InvalidCredentialsException: If authentication fails for any reason

        """
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        credential = user.credential if user is not None else None
        password_hash = None
        if credential is not None and not isinstance(credential, FederatedCredential):
            password_hash = credential.password_hash
        if not await verify_password_or_dummy(password, password_hash):
            if user is None:
                logger.info("Login failed: unknown email")
            elif isinstance(credential, FederatedCredential):
                logger.info(f"Login failed: user {user.id} has no password credential")
            else:
                logger.info(f"Login failed: wrong password for user {user.id}")
            raise InvalidCredentialsException()

        if not user.email_verified:
            logger.info(f"Login failed: email not verified for user {user.id}")
            raise InvalidCredentialsException()

        return user

    @staticmethod
    async def issue_session(
        session: AsyncSession,
        user: User,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SessionTokens:
        """Mint an access token and open a refresh session for ``user``.

        The refresh row is flushed; the caller commits.
        """
        access_token = create_access_token(user.id, user.email)
        issued = await RefreshSessionManager.issue(session, user.id, device_info=device_info, ip_address=ip_address)
        return SessionTokens(
            access_token=access_token,
            refresh_token=issued.secret,
            expires_in=settings.jwt_expiry_hours * 3600,
        )

    @staticmethod
    async def refresh(session: AsyncSession, refresh_token: str) -> tuple[User, SessionTokens]:
        """Rotate a refresh session and mint a fresh access token.

        The account must still exist with a verified email; otherwise the new
        refresh session is revoked straight away.

        Raises:
            InvalidRefreshTokenException: If rotation fails or the account is unusable

        """
        rotated = await RefreshSessionManager.rotate(session, refresh_token)

        user = await session.get(User, rotated.user_id)
        if user is None or not user.email_verified:
            logger.warning(f"Refresh rejected: user {rotated.user_id} missing or unverified")
            await RefreshSessionManager.revoke(session, rotated.secret)
            await session.commit()
            raise InvalidRefreshTokenException()

        tokens = SessionTokens(
            access_token=create_access_token(user.id, user.email),
            refresh_token=rotated.secret,
            expires_in=settings.jwt_expiry_hours * 3600,
        )
        return user, tokens
