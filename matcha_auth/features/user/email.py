"""Outbound account emails.

Delivery is behind the ``EmailSender`` protocol. The bundled sender only logs
recipient and subject; bodies carry live tokens and are never logged.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from matcha_auth.config.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class LoggingEmailSender:
    """Sender that records that an email would have been sent."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(f"Email '{message.subject}' queued for {message.to}")


_sender: EmailSender = LoggingEmailSender()


def get_email_sender() -> EmailSender:
    """FastAPI dependency returning the configured sender."""
    return _sender


def build_verification_email(to: str, username: str, token: str) -> EmailMessage:
    link = f"{settings.frontend_url}/verify-email?token={token}"
    body = (
        f"Hi {username},\n\n"
        "Welcome to Matcha Time! Please verify your email address to complete your registration.\n\n"
        f"Verify your email by clicking this link:\n{link}\n\n"
        f"This link will expire in {settings.email_verification_ttl_hours} hours.\n\n"
        "If you didn't create this account, you can safely ignore this email."
    )
    return EmailMessage(to=to, subject="Verify Your Matcha Time Email", body=body)


def build_password_reset_email(to: str, username: str, token: str) -> EmailMessage:
    link = f"{settings.frontend_url}/reset-password?token={token}"
    hours = settings.password_reset_ttl_hours
    body = (
        f"Hi {username},\n\n"
        "You requested to reset your password for your Matcha Time account.\n\n"
        f"Reset your password by clicking this link:\n{link}\n\n"
        f"This link will expire in {hours} hour{'s' if hours != 1 else ''}.\n\n"
        "If you didn't request this, you can safely ignore this email."
    )
    return EmailMessage(to=to, subject="Reset Your Matcha Time Password", body=body)


def build_password_changed_email(to: str, username: str) -> EmailMessage:
    body = (
        f"Hi {username},\n\n"
        "Your Matcha Time password has been successfully changed.\n\n"
        "If you did not make this change, please reset your password immediately at:\n"
        f"{settings.frontend_url}/reset-password\n\n"
        "Best regards,\nMatcha Time Team"
    )
    return EmailMessage(to=to, subject="Your Matcha Time Password Was Changed", body=body)
