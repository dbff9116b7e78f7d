"""OpenID Connect client for the federated identity provider."""

import hmac
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
import jwt
from jwt.exceptions import InvalidTokenError, PyJWKError, PyJWKSetError

from matcha_auth.config.settings import settings

from ..exceptions import OIDCProviderException
from .flow import FlowState

logger = logging.getLogger(__name__)

SCOPES = "openid email profile"


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


@dataclass(frozen=True)
class FederatedIdentity:
    """Verified identity claims from an ID token."""

    subject: str
    email: str
    email_verified: bool
    name: str | None = None
    picture: str | None = None


class OIDCClient:
    """Authorization code flow with PKCE against a discovered provider.

    Provider metadata and signing keys are fetched lazily and cached for the
    lifetime of the client. An unknown key id triggers one JWKS refresh, which
    covers provider key rotation.
    """

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        timeout: float = 10.0,
    ):
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.timeout = timeout
        self._metadata: ProviderMetadata | None = None
        self._jwks: jwt.PyJWKSet | None = None

    async def _get_json(self, url: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"OIDC request to {url} failed: {e}")
            raise OIDCProviderException() from e

    async def discover(self) -> ProviderMetadata:
        """Fetch and cache the provider's discovery document."""
        if self._metadata is None:
            document = await self._get_json(f"{self.issuer_url}/.well-known/openid-configuration")
            try:
                self._metadata = ProviderMetadata(
                    issuer=document["issuer"],
                    authorization_endpoint=document["authorization_endpoint"],
                    token_endpoint=document["token_endpoint"],
                    jwks_uri=document["jwks_uri"],
                )
            except KeyError as e:
                logger.error(f"OIDC discovery document is missing {e}")
                raise OIDCProviderException() from e
        return self._metadata

    async def authorization_url(self, flow: FlowState) -> str:
        """Build the URL the browser is redirected to."""
        metadata = await self.discover()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": SCOPES,
            "state": flow.csrf_token,
            "nonce": flow.nonce,
            "code_challenge": flow.code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{metadata.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str, pkce_verifier: str) -> str:
        """Exchange an authorization code for an ID token.

        Raises:
            OIDCProviderException: If the provider rejects the code or returns no ID token

        """
        metadata = await self.discover()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code_verifier": pkce_verifier,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(metadata.token_endpoint, data=data)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"OIDC token exchange failed: {e}")
            raise OIDCProviderException() from e

        id_token = payload.get("id_token")
        if not id_token:
            logger.error("OIDC token response did not contain an ID token")
            raise OIDCProviderException()
        return id_token

    async def _signing_key(self, kid: str | None, refresh: bool = False) -> jwt.PyJWK:
        if self._jwks is None or refresh:
            metadata = await self.discover()
            try:
                self._jwks = jwt.PyJWKSet.from_dict(await self._get_json(metadata.jwks_uri))
            except (PyJWKSetError, PyJWKError) as e:
                logger.error(f"OIDC JWKS could not be parsed: {e}")
                raise OIDCProviderException() from e

        for key in self._jwks.keys:
            if key.key_id == kid:
                return key

        if not refresh:
            return await self._signing_key(kid, refresh=True)
        logger.error(f"No OIDC signing key matches kid {kid}")
        raise OIDCProviderException()

    async def verify_id_token(self, id_token: str, nonce: str) -> FederatedIdentity:
        """Verify signature, audience, issuer, expiry and nonce of an ID token.

        Raises:
            OIDCProviderException: If the token fails any check

        """
        metadata = await self.discover()
        try:
            header = jwt.get_unverified_header(id_token)
            key = await self._signing_key(header.get("kid"))
            claims = jwt.decode(
                id_token,
                key.key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=metadata.issuer,
                options={"require": ["sub", "iss", "aud", "exp", "iat"]},
            )
        except InvalidTokenError as e:
            logger.error(f"ID token verification failed: {e}")
            raise OIDCProviderException() from e

        if not _constant_time_equal(claims.get("nonce"), nonce):
            logger.error("ID token nonce does not match the flow in progress")
            raise OIDCProviderException()

        email = claims.get("email")
        if not email:
            logger.error("ID token does not contain an email")
            raise OIDCProviderException()

        return FederatedIdentity(
            subject=str(claims["sub"]),
            email=str(email),
            email_verified=claims.get("email_verified") is True,
            name=claims.get("name"),
            picture=claims.get("picture"),
        )


def _constant_time_equal(a: str | None, b: str) -> bool:
    if a is None:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


_client: OIDCClient | None = None


def get_oidc_client() -> OIDCClient:
    """FastAPI dependency returning the process-wide provider client."""
    global _client

    if _client is None:
        _client = OIDCClient(
            issuer_url=settings.oidc_issuer_url,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_url=settings.redirect_url,
            timeout=settings.oidc_http_timeout_seconds,
        )
    return _client
