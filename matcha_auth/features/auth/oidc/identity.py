"""Resolve a verified federated identity to a local user."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.features.user.models import User, UserStats

logger = logging.getLogger(__name__)

# Leaves room in the username column for a numeric suffix
_MAX_BASE_USERNAME_LENGTH = 90


def base_username(name: str | None, email: str) -> str:
    """Display name if present, otherwise the local part of the email."""
    if name and name.strip():
        return name.strip()[:_MAX_BASE_USERNAME_LENGTH]
    return email.split("@", 1)[0][:_MAX_BASE_USERNAME_LENGTH]


async def _username_taken(session: AsyncSession, username: str) -> bool:
    result = await session.execute(select(User.id).where(User.username == username))
    return result.scalar_one_or_none() is not None


async def resolve_federated_user(
    session: AsyncSession,
    external_id: str,
    email: str,
    name: str | None = None,
    picture: str | None = None,
) -> User:
    """Find, link or create the user behind a federated identity.

    1. A user already linked to ``external_id`` is returned, with the
       picture refreshed if it changed.
    2. A user with the same email is linked to ``external_id`` (or has its
       picture refreshed if it is already linked elsewhere).
    3. Otherwise a new user and stats row are created. Username conflicts are
       retried with ``name2``, ``name3`` and so on.

    Changes are flushed; the caller commits.

    Raises:
        IntegrityError: For any conflict other than the username

    """
    result = await session.execute(select(User).where(User.google_id == external_id))
    user = result.scalar_one_or_none()
    if user is not None:
        if picture and picture != user.profile_picture_url:
            user.profile_picture_url = picture
            await session.flush()
        return user

    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is not None:
        if user.google_id is None:
            user.link_federated(external_id, picture)
            logger.info(f"Linked federated identity to existing user {user.id}")
        elif picture and picture != user.profile_picture_url:
            user.profile_picture_url = picture
        await session.flush()
        return user

    base = base_username(name, email)
    candidate = base
    counter = 1

    while True:
        user = User.federated(username=candidate, email=email, external_id=external_id, picture=picture)
        session.add(user)
        try:
            await session.flush()
            session.add(UserStats(user_id=user.id))
            await session.flush()
        except IntegrityError:
            await session.rollback()
            if not await _username_taken(session, candidate):
                raise
            counter += 1
            candidate = f"{base}{counter}"
            logger.debug(f"Username taken, retrying federated signup as {candidate}")
            continue

        logger.info(f"Created federated user {user.id}")
        return user
