"""User service layer.

Enumeration-resistant operations (register, password reset request,
verification resend) never tell the caller whether an account exists. They
return the email to send, if any, and the router turns every outcome into
the same response.
"""

import logging

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.config.settings import settings
from matcha_auth.features.auth.exceptions import ExpiredActionTokenException, IncorrectPasswordException
from matcha_auth.features.auth.password import hash_password, verify_password
from matcha_auth.features.auth.refresh_tokens import RefreshSessionManager

from .action_tokens import ActionTokenPurpose, ActionTokenService
from .email import (
    EmailMessage,
    build_password_changed_email,
    build_password_reset_email,
    build_verification_email,
)
from .exceptions import PasswordNotSet, UsernameAlreadyExists, UserNotFound, ValidationFailure
from .models import FederatedCredential, User, UserStats
from .schemas import UserRegisterRequest, UserUpdateRequest

logger = logging.getLogger(__name__)


async def _find_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


class UserService:
    """Service for user operations."""

    @staticmethod
    async def register(session: AsyncSession, data: UserRegisterRequest) -> EmailMessage | None:
        """Register a new password account.

        The password is hashed before any lookup so that taken and free
        usernames or emails cost the same.

        Args:
            session: Database session
            data: User registration data

        Returns:
            The verification email to send, or None if the username or email
            is already taken

        """
        password_hash = await hash_password(data.password)

        stmt = select(User).where(or_(User.username == data.username, User.email == data.email))
        result = await session.execute(stmt)
        existing = result.scalars().first()
        if existing is not None:
            field = "email" if existing.email == data.email else "username"
            logger.info(f"Registration skipped: {field} already in use")
            return None

        user = User.with_password(username=data.username, email=data.email, password_hash=password_hash)
        session.add(user)
        try:
            await session.flush()
            session.add(UserStats(user_id=user.id))
            await session.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration
            await session.rollback()
            logger.info("Registration skipped: username or email claimed concurrently")
            return None

        token = await ActionTokenService.issue(
            session, user.id, ActionTokenPurpose.EMAIL_VERIFICATION, settings.email_verification_ttl_hours
        )
        logger.info(f"New user registered: {user.id}")
        return build_verification_email(user.email, user.username, token)

    @staticmethod
    async def verify_email(session: AsyncSession, token: str) -> bool:
        """Consume a verification token.

        Returns:
            True if an account was verified, False for any unusable token

        """
        user_id = await ActionTokenService.consume(session, token, ActionTokenPurpose.EMAIL_VERIFICATION)
        if user_id is None:
            return False

        user = await session.get(User, user_id)
        if user is None:
            return False

        user.email_verified = True
        logger.info(f"Email verified for user {user_id}")
        return True

    @staticmethod
    async def resend_verification(session: AsyncSession, email: str) -> EmailMessage | None:
        """Issue a fresh verification token for an unverified account."""
        user = await _find_by_email(session, email)
        if user is None:
            logger.info("Verification resend skipped: unknown email")
            return None
        if user.email_verified:
            logger.info(f"Verification resend skipped: user {user.id} already verified")
            return None

        token = await ActionTokenService.issue(
            session, user.id, ActionTokenPurpose.EMAIL_VERIFICATION, settings.email_verification_ttl_hours
        )
        return build_verification_email(user.email, user.username, token)

    @staticmethod
    async def request_password_reset(session: AsyncSession, email: str) -> EmailMessage | None:
        """Issue a password reset token, superseding any earlier one."""
        user = await _find_by_email(session, email)
        if user is None:
            logger.info("Password reset skipped: unknown email")
            return None

        token = await ActionTokenService.issue(
            session, user.id, ActionTokenPurpose.PASSWORD_RESET, settings.password_reset_ttl_hours
        )
        logger.info(f"Password reset requested for user {user.id}")
        return build_password_reset_email(user.email, user.username, token)

    @staticmethod
    async def reset_password(session: AsyncSession, token: str, new_password: str) -> EmailMessage:
        """Set a new password with a reset token and end every session.

        Receiving the reset email proves control of the address, so the email
        is marked verified as well.

        Raises:
            ExpiredActionTokenException: If the token is unknown, used, superseded or expired

        """
        user_id = await ActionTokenService.consume(session, token, ActionTokenPurpose.PASSWORD_RESET)
        user = await session.get(User, user_id) if user_id is not None else None
        if user is None:
            raise ExpiredActionTokenException()

        user.password_hash = await hash_password(new_password)
        user.email_verified = True
        await RefreshSessionManager.revoke_all(session, user.id)

        logger.info(f"Password reset for user {user.id}")
        return build_password_changed_email(user.email, user.username)

    @staticmethod
    async def change_password(
        session: AsyncSession, user: User, current_password: str, new_password: str
    ) -> EmailMessage:
        """Change the password of a signed-in user and end every session.

        Raises:
            PasswordNotSet: If the account has no password credential
            IncorrectPasswordException: If ``current_password`` is wrong
            ValidationFailure: If the new password equals the current one

        """
        credential = user.credential
        if isinstance(credential, FederatedCredential):
            raise PasswordNotSet()
        if not await verify_password(current_password, credential.password_hash):
            logger.info(f"Password change refused for user {user.id}: wrong current password")
            raise IncorrectPasswordException()
        if current_password == new_password:
            raise ValidationFailure("New password must be different from the current password")

        user.password_hash = await hash_password(new_password)
        await RefreshSessionManager.revoke_all(session, user.id)

        logger.info(f"Password changed for user {user.id}")
        return build_password_changed_email(user.email, user.username)

    @staticmethod
    async def update_profile(session: AsyncSession, user: User, data: UserUpdateRequest) -> User:
        """Update username or language preferences.

        Raises:
            UsernameAlreadyExists: If the username is taken

        """
        if data.username is not None and data.username != user.username:
            result = await session.execute(select(User.id).where(User.username == data.username))
            if result.scalar_one_or_none() is not None:
                raise UsernameAlreadyExists()
            user.username = data.username

        if data.native_language is not None:
            user.native_language = data.native_language
        if data.learning_language is not None:
            user.learning_language = data.learning_language

        try:
            await session.flush()
        except IntegrityError as err:
            # Lost a race with a concurrent update
            await session.rollback()
            raise UsernameAlreadyExists() from err

        return user

    @staticmethod
    async def delete_user(session: AsyncSession, user_id: int) -> None:
        """Delete an account; tokens and stats go with it.

        Raises:
            UserNotFound: If the account no longer exists

        """
        result = await session.execute(delete(User).where(User.id == user_id))
        if (result.rowcount or 0) == 0:
            raise UserNotFound()
        logger.info(f"User {user_id} deleted")
