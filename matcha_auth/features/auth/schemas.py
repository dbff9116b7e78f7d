"""Authentication schemas (DTOs)."""

from pydantic import BaseModel

from matcha_auth.features.user.schemas import UserResponse


# Request schemas
class RefreshTokenRequest(BaseModel):
    """Refresh request for clients that cannot hold the refresh cookie."""

    refresh_token: str | None = None


# Response schemas
class TokenResponse(BaseModel):
    """Session tokens, also delivered as cookies."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse
