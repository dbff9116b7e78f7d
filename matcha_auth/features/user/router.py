"""User account router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.database.dependencies import get_db_session
from matcha_auth.features.auth.cookies import clear_session_cookies, set_session_cookies
from matcha_auth.features.auth.dependencies import get_current_claims, get_current_user
from matcha_auth.features.auth.jwt_utils import AccessTokenClaims
from matcha_auth.features.auth.schemas import TokenResponse
from matcha_auth.features.auth.service import AuthService

from .email import EmailMessage, EmailSender, get_email_sender
from .models import User
from .schemas import (
    EmailRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
    UserLoginRequest,
    UserRegisterRequest,
    UserResponse,
    UserUpdateRequest,
)
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["User Management"])

REGISTER_MESSAGE = "Registration successful. Please check your email to verify your account."
RESET_REQUEST_MESSAGE = "If an account exists with that email, a password reset link has been sent."
RESEND_MESSAGE = "If an unverified account exists with that email, a verification link has been sent."
EMAIL_VERIFIED_MESSAGE = "Email verified successfully"
VERIFICATION_PROCESSED_MESSAGE = "Your verification request has been processed successfully"


async def _deliver(sender: EmailSender, message: EmailMessage | None) -> None:
    """Send ``message`` after the transaction has committed.

    Delivery failures are logged and never change the response.
    """
    if message is None:
        return
    try:
        await sender.send(message)
    except Exception:
        logger.exception(f"Failed to send '{message.subject}' email")


@router.post("/register", response_model=MessageResponse)
async def register(
    data: UserRegisterRequest,
    session: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    """Register a new account.

    Responds identically whether or not the username or email is taken.
    """
    message = await UserService.register(session, data)
    await session.commit()
    await _deliver(sender, message)
    return MessageResponse(message=REGISTER_MESSAGE)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: UserLoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
):
    """Login with email and password.

    Returns tokens in the body and as cookies.
    """
    user = await AuthService.authenticate(session, data.email, data.password)
    tokens = await AuthService.issue_session(
        session,
        user,
        device_info=request.headers.get("user-agent"),
        ip_address=get_remote_address(request),
    )
    await session.commit()

    logger.info(f"User logged in: {user.id}")
    set_session_cookies(response, tokens.access_token, tokens.refresh_token)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        user=UserResponse.model_validate(user),
    )


@router.post("/request-password-reset", response_model=MessageResponse)
async def request_password_reset(
    data: EmailRequest,
    session: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    message = await UserService.request_password_reset(session, data.email)
    await session.commit()
    await _deliver(sender, message)
    return MessageResponse(message=RESET_REQUEST_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: PasswordResetRequest,
    session: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    """Set a new password with an emailed token. Signs out every device."""
    message = await UserService.reset_password(session, data.token, data.new_password)
    await session.commit()
    await _deliver(sender, message)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    data: EmailRequest,
    session: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    message = await UserService.resend_verification(session, data.email)
    await session.commit()
    await _deliver(sender, message)
    return MessageResponse(message=RESEND_MESSAGE)


@router.get("/verify-email", response_model=MessageResponse)
async def verify_email(token: str, session: AsyncSession = Depends(get_db_session)):
    """Verify an email address.

    Unknown, expired and already used tokens all get the same message.
    """
    verified = await UserService.verify_email(session, token)
    await session.commit()
    return MessageResponse(message=EMAIL_VERIFIED_MESSAGE if verified else VERIFICATION_PROCESSED_MESSAGE)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return UserResponse.model_validate(current_user)


@router.put("/me", response_model=UserResponse)
async def update_current_user(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update username or language preferences."""
    user = await UserService.update_profile(session, current_user, data)
    await session.commit()
    return UserResponse.model_validate(user)


@router.post("/me/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChangeRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    """Change password. Every refresh session, including this one, is ended."""
    message = await UserService.change_password(session, current_user, data.current_password, data.new_password)
    await session.commit()
    await _deliver(sender, message)
    clear_session_cookies(response)
    return MessageResponse(message="Password changed successfully")


@router.delete("/me", response_model=MessageResponse)
async def delete_current_user(
    response: Response,
    claims: AccessTokenClaims = Depends(get_current_claims),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete the signed-in account and everything attached to it."""
    await UserService.delete_user(session, claims.user_id)
    await session.commit()
    clear_session_cookies(response)
    return MessageResponse(message="User deleted successfully")
