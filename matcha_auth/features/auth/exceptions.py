"""Authentication exceptions.

Every authentication failure renders as a 401 with a generic message; the
specific cause is only ever logged server-side.
"""

from fastapi import HTTPException, status


class AuthenticationException(HTTPException):
    """Base authentication exception."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when email or password is incorrect, or the email is unverified."""

    def __init__(self):
        super().__init__(detail="Invalid email or password")


class IncorrectPasswordException(AuthenticationException):
    """Raised when the current password does not match on password change."""

    def __init__(self):
        super().__init__(detail="Current password is incorrect")


class NotAuthenticatedException(AuthenticationException):
    """Raised when no session is present."""

    def __init__(self):
        super().__init__(detail="Not authenticated")


class InvalidTokenException(AuthenticationException):
    """Raised when an access token is invalid or expired."""

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(detail=detail)


class InvalidRefreshTokenException(InvalidTokenException):
    """Raised when a refresh token is unknown, already rotated, revoked or expired."""

    def __init__(self):
        super().__init__(detail="Invalid refresh token")


class ExpiredActionTokenException(InvalidTokenException):
    """Raised when a reset token is unknown, used, superseded or expired."""

    def __init__(self, detail: str = "Invalid or expired reset token"):
        super().__init__(detail=detail)


class OIDCFlowException(HTTPException):
    """Raised when the federated login callback does not match a flow in progress."""

    def __init__(self, detail: str = "Invalid authentication flow"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class OIDCProviderException(HTTPException):
    """Raised when the identity provider cannot be reached or returns unusable data."""

    def __init__(self, detail: str = "Authentication provider error"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
