"""Tests for access token minting and verification."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from matcha_auth.config.settings import settings
from matcha_auth.features.auth.exceptions import InvalidTokenException
from matcha_auth.features.auth.jwt_utils import create_access_token, verify_access_token


class TestAccessTokens:
    def test_mint_then_verify_returns_claims(self):
        token = create_access_token(42, "user@example.com")
        claims = verify_access_token(token)
        assert claims.user_id == 42
        assert claims.email == "user@example.com"
        assert claims.expires_at > claims.issued_at

    def test_default_lifetime_is_configured_hours(self):
        claims = verify_access_token(create_access_token(1, "a@example.com"))
        lifetime = claims.expires_at - claims.issued_at
        assert lifetime == timedelta(hours=settings.jwt_expiry_hours)

    def test_expired_token_is_rejected(self):
        token = create_access_token(1, "a@example.com", expires_delta=timedelta(seconds=-1))
        with pytest.raises(InvalidTokenException) as exc_info:
            verify_access_token(token)
        assert exc_info.value.detail == "Invalid or expired token"

    def test_wrong_secret_is_rejected_with_same_message(self):
        token = jwt.encode(
            {"sub": "1", "email": "a@example.com", "iat": datetime.now(UTC), "exp": datetime.now(UTC) + timedelta(hours=1)},
            "another-secret-that-is-also-long-enough",
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenException) as exc_info:
            verify_access_token(token)
        assert exc_info.value.detail == "Invalid or expired token"

    def test_tampered_token_is_rejected(self):
        token = create_access_token(1, "a@example.com")
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[:-2]}{'A' if signature[-2] != 'A' else 'B'}{signature[-1]}"
        with pytest.raises(InvalidTokenException):
            verify_access_token(tampered)

    def test_missing_claim_is_rejected(self):
        token = jwt.encode(
            {"sub": "1", "iat": datetime.now(UTC), "exp": datetime.now(UTC) + timedelta(hours=1)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(InvalidTokenException):
            verify_access_token(token)

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b.c"])
    def test_malformed_token_is_rejected(self, garbage):
        with pytest.raises(InvalidTokenException):
            verify_access_token(garbage)
