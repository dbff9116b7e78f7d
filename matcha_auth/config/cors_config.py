"""Cross-origin policy for the cookie-authenticated frontend.

Session cookies are sent with every cross-origin request, so credentials are
always allowed. Browsers refuse ``*`` together with credentials; it is rejected
here instead of failing silently in the browser.
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEV_ORIGINS = ("http://localhost:8080", "http://127.0.0.1:8080")
ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
ALLOWED_HEADERS = ("authorization", "content-type", "x-request-id")


class CORSConfigurationError(Exception):
    """Raised when the allowed origins are unusable."""


def split_origins(value: str | list[str] | None) -> list[str]:
    """Accept ``a,b`` strings (as read from the environment) or lists."""
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [item.strip() for item in items if item.strip()]


def canonical_origin(origin: str) -> str:
    """Return ``scheme://host[:port]`` without a trailing slash.

    Raises:
        CORSConfigurationError: For empty, wildcard or relative origins

    """
    origin = origin.strip().rstrip("/")
    if not origin:
        raise CORSConfigurationError("Origin cannot be empty")
    if origin == "*":
        raise CORSConfigurationError("Wildcard origin cannot be combined with credentialed requests")

    parsed = urlparse(origin)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise CORSConfigurationError(f"Origin must be an absolute http(s) URL: {origin}")
    return origin


@dataclass(frozen=True)
class CORSConfiguration:
    origins: tuple[str, ...]
    max_age: int = 600
    methods: tuple[str, ...] = field(default=ALLOWED_METHODS)
    headers: tuple[str, ...] = field(default=ALLOWED_HEADERS)

    @classmethod
    def build(cls, allowed_origins: str | list[str] | None, development: bool) -> "CORSConfiguration":
        """Validate ``allowed_origins`` for the environment.

        Development falls back to the local frontend; production has no
        fallback and caches preflight responses for an hour.

        Raises:
            CORSConfigurationError: If an origin is invalid, or none is configured in production

        """
        origins = tuple(canonical_origin(o) for o in split_origins(allowed_origins))
        if development:
            return cls(origins=origins or DEV_ORIGINS)
        if not origins:
            raise CORSConfigurationError("Production environment requires explicit allowed origins")
        return cls(origins=origins, max_age=3600)

    def middleware_kwargs(self) -> dict:
        """Keyword arguments for ``CORSMiddleware``."""
        return {
            "allow_origins": list(self.origins),
            "allow_credentials": True,
            "allow_methods": list(self.methods),
            "allow_headers": list(self.headers),
            "max_age": self.max_age,
        }
