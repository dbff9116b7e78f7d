"""Federated login flow state (CSRF token, nonce and PKCE verifier).

The state is held by the browser in an encrypted, short-lived cookie between
the redirect to the provider and the callback.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import asdict, dataclass

from matcha_auth.config.settings import settings

from ..cookies import CookieDecryptionError, decrypt_cookie_value, encrypt_cookie_value
from ..exceptions import OIDCFlowException

logger = logging.getLogger(__name__)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class FlowState:
    csrf_token: str
    nonce: str
    pkce_verifier: str

    @classmethod
    def new(cls) -> "FlowState":
        """Generate fresh random values for a new login attempt."""
        return cls(
            csrf_token=secrets.token_urlsafe(32),
            nonce=secrets.token_urlsafe(32),
            # 43 to 128 characters from the unreserved set
            pkce_verifier=secrets.token_urlsafe(64),
        )

    @property
    def code_challenge(self) -> str:
        """S256 PKCE challenge for ``pkce_verifier``."""
        return _b64url(hashlib.sha256(self.pkce_verifier.encode("ascii")).digest())

    def matches_state(self, state: str) -> bool:
        return hmac.compare_digest(self.csrf_token.encode(), state.encode())

    def to_cookie(self) -> str:
        return encrypt_cookie_value(json.dumps(asdict(self)))

    @classmethod
    def from_cookie(cls, value: str) -> "FlowState":
        """Decrypt and parse a flow cookie.

        Raises:
            OIDCFlowException: If the cookie is tampered with, too old or malformed

        """
        try:
            raw = decrypt_cookie_value(value, max_age_seconds=settings.oidc_flow_expiry_minutes * 60)
            data = json.loads(raw)
            return cls(
                csrf_token=str(data["csrf_token"]),
                nonce=str(data["nonce"]),
                pkce_verifier=str(data["pkce_verifier"]),
            )
        except (CookieDecryptionError, ValueError, KeyError, TypeError) as err:
            logger.warning(f"Rejected OIDC flow cookie: {type(err).__name__}")
            raise OIDCFlowException() from err
