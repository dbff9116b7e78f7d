"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.database.dependencies import get_db_session
from matcha_auth.features.user.models import User

from .cookies import AUTH_COOKIE
from .exceptions import InvalidTokenException, NotAuthenticatedException
from .jwt_utils import AccessTokenClaims, verify_access_token

bearer = HTTPBearer(auto_error=False)


def get_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> str:
    """Read the access token from the auth cookie, or a Bearer header as fallback.

    Raises:
        NotAuthenticatedException: If neither is present

    """
    token = request.cookies.get(AUTH_COOKIE)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    raise NotAuthenticatedException()


async def get_current_user(
    token: str = Depends(get_access_token),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from the access token.

    Raises:
        InvalidTokenException: If token is invalid or the user no longer exists

    """
    claims = verify_access_token(token)

    user = await session.get(User, claims.user_id)
    if user is None:
        raise InvalidTokenException()

    return user


def get_current_claims(token: str = Depends(get_access_token)) -> AccessTokenClaims:
    """Verified access token claims, without loading the user."""
    return verify_access_token(token)
