"""JWT utilities for access tokens."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from jwt.exceptions import InvalidTokenError

from matcha_auth.config.settings import settings

from .exceptions import InvalidTokenException

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["sub", "email", "iat", "exp"]


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified claims of an access token."""

    user_id: int
    email: str
    issued_at: datetime
    expires_at: datetime


def create_access_token(user_id: int, email: str, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token.

    Args:
        user_id: Subject of the token
        email: Email address of the subject
        expires_delta: Optional lifetime, defaults to ``jwt_expiry_hours``

    Returns:
        Encoded JWT token string

    """
    now = datetime.now(UTC)
    expire = now + (expires_delta if expires_delta is not None else timedelta(hours=settings.jwt_expiry_hours))

    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> AccessTokenClaims:
    """Verify an access token and return its claims.

    Raises:
        InvalidTokenException: For any failure (bad signature, malformed,
            missing claims, expired). The cause is logged at debug level only.

    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": _REQUIRED_CLAIMS},
        )
        return AccessTokenClaims(
            user_id=int(payload["sub"]),
            email=str(payload["email"]),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
    except (InvalidTokenError, ValueError, TypeError) as err:
        logger.debug(f"Access token rejected: {type(err).__name__}")
        raise InvalidTokenException() from err
