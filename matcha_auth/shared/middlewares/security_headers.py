"""Security headers added to every response."""

from fastapi import Request


async def security_headers_middleware(request: Request, call_next):
    """Add anti-sniffing, anti-framing and referrer headers.

    HSTS is only sent outside development, where plain HTTP is expected.
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not request.app.state.settings.is_development:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response
