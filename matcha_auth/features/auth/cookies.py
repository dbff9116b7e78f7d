"""Session cookies and the encrypted cookie codec.

All cookies are HttpOnly on Path=/ and Secure outside development.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from fastapi import Response

from matcha_auth.config.settings import settings

AUTH_COOKIE = "auth_token"
REFRESH_COOKIE = "refresh_token"
OIDC_FLOW_COOKIE = "oidc_flow"

_KDF_SALT = b"matcha-auth-cookie-v1"
_KDF_ITERATIONS = 100_000


class CookieDecryptionError(Exception):
    """Raised when an encrypted cookie is tampered with, expired or unreadable."""


@lru_cache
def _get_cipher(secret: str) -> Fernet:
    """Derive a Fernet key from the configured cookie secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))


def encrypt_cookie_value(value: str) -> str:
    return _get_cipher(settings.cookie_secret).encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_cookie_value(token: str, max_age_seconds: int | None = None) -> str:
    """Decrypt a value produced by ``encrypt_cookie_value``.

    Args:
        token: Cookie value
        max_age_seconds: Reject values encrypted longer ago than this

    Raises:
        CookieDecryptionError: If the value cannot be authenticated or is too old

    """
    try:
        return _get_cipher(settings.cookie_secret).decrypt(token.encode("ascii"), ttl=max_age_seconds).decode("utf-8")
    except (InvalidToken, UnicodeError) as err:
        raise CookieDecryptionError("Cookie could not be decrypted") from err


def _cookie_options() -> dict:
    options: dict = {
        "path": "/",
        "httponly": True,
        "secure": not settings.is_development,
    }
    if settings.cookie_domain:
        options["domain"] = settings.cookie_domain
    return options


def set_auth_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        AUTH_COOKIE,
        access_token,
        max_age=settings.jwt_expiry_hours * 3600,
        samesite="lax",
        **_cookie_options(),
    )


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    """Set the refresh cookie. SameSite is Strict, relaxed to Lax in development."""
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_token_expiry_days * 86400,
        samesite="lax" if settings.is_development else "strict",
        **_cookie_options(),
    )


def set_session_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    set_auth_cookie(response, access_token)
    set_refresh_cookie(response, refresh_token)


def clear_session_cookies(response: Response) -> None:
    options = _cookie_options()
    response.delete_cookie(AUTH_COOKIE, samesite="lax", **options)
    response.delete_cookie(
        REFRESH_COOKIE,
        samesite="lax" if settings.is_development else "strict",
        **options,
    )


def set_flow_cookie(response: Response, encrypted_state: str) -> None:
    response.set_cookie(
        OIDC_FLOW_COOKIE,
        encrypted_state,
        max_age=settings.oidc_flow_expiry_minutes * 60,
        samesite="lax",
        **_cookie_options(),
    )


def clear_flow_cookie(response: Response) -> None:
    response.delete_cookie(OIDC_FLOW_COOKIE, samesite="lax", **_cookie_options())
