"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from matcha_auth.shared.validators import validate_password_strength, validate_username

from .models import AuthProvider


# Request schemas
class UserRegisterRequest(BaseModel):
    """User registration request."""

    username: str
    email: EmailStr
    password: str

    @field_validator("username")
    @classmethod
    def username_format(cls, value: str) -> str:
        return validate_username(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class UserLoginRequest(BaseModel):
    """Login request.

    The password is not strength-checked here; a weak password simply fails
    to authenticate like any other wrong one.
    """

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class EmailRequest(BaseModel):
    """Body of the password reset request and verification resend endpoints."""

    email: EmailStr


class PasswordResetRequest(BaseModel):
    """Password reset with an emailed token."""

    token: str = Field(..., min_length=1, max_length=256)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return validate_password_strength(value)


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class UserUpdateRequest(BaseModel):
    """Profile update (username and language preferences)."""

    username: str | None = None
    native_language: str | None = Field(None, min_length=2, max_length=8)
    learning_language: str | None = Field(None, min_length=2, max_length=8)

    @field_validator("username")
    @classmethod
    def username_format(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return validate_username(value)


# Response schemas
class UserResponse(BaseModel):
    """User response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    email_verified: bool
    auth_provider: AuthProvider
    profile_picture_url: str | None = None
    native_language: str | None = None
    learning_language: str | None = None
    created_at: datetime


class MessageResponse(BaseModel):
    message: str
