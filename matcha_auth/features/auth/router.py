"""Authentication router (session endpoints)."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.database.dependencies import get_db_session
from matcha_auth.features.user.models import User
from matcha_auth.features.user.schemas import MessageResponse, UserResponse

from .cookies import REFRESH_COOKIE, clear_session_cookies, set_session_cookies
from .dependencies import get_current_user
from .exceptions import NotAuthenticatedException
from .refresh_tokens import RefreshSessionManager
from .schemas import RefreshTokenRequest, TokenResponse
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _presented_refresh_token(request: Request, data: RefreshTokenRequest | None) -> str | None:
    token = request.cookies.get(REFRESH_COOKIE)
    if token:
        return token
    if data is not None and data.refresh_token:
        return data.refresh_token
    return None


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    """Get the profile of the signed-in user."""
    return current_user


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Rotate the refresh session and issue a new access token.

    The refresh token is read from the ``refresh_token`` cookie, or from the
    body for clients without cookies. The presented token is dead afterwards.
    """
    token = _presented_refresh_token(request, data)
    if token is None:
        raise NotAuthenticatedException()

    user, tokens = await AuthService.refresh(session, token)

    set_session_cookies(response, tokens.access_token, tokens.refresh_token)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke the current refresh session and clear cookies.

    Always succeeds, even without a session.
    """
    token = _presented_refresh_token(request, data)
    if token is not None:
        revoked = await RefreshSessionManager.revoke(session, token)
        await session.commit()
        if revoked:
            logger.info("Refresh session revoked on logout")

    clear_session_cookies(response)
    return MessageResponse(message="Logged out successfully")
