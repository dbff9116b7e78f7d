"""User domain models."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from matcha_auth.database.base import Base, TimestampMixin


class AuthProvider(StrEnum):
    """How the account was first established."""

    PASSWORD = "password"
    GOOGLE = "google"


@dataclass(frozen=True)
class PasswordCredential:
    """Account that can only sign in with a password."""

    password_hash: str


@dataclass(frozen=True)
class FederatedCredential:
    """Account that can only sign in through the identity provider."""

    external_id: str


@dataclass(frozen=True)
class LinkedCredential:
    """Password account that has also been linked to the identity provider."""

    password_hash: str
    external_id: str


Credential = PasswordCredential | FederatedCredential | LinkedCredential


class User(Base, TimestampMixin):
    """User model for authentication.

    A user always has at least one way to sign in: a password hash, a
    federated external id, or both. The database enforces it with a CHECK
    constraint and ``credential`` exposes it as a closed variant.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "password_hash IS NOT NULL OR google_id IS NOT NULL",
            name="ck_users_has_credential",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (globally unique)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Credentials
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    auth_provider: Mapped[AuthProvider] = mapped_column(
        Enum(AuthProvider, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AuthProvider.PASSWORD,
    )

    # Profile
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    profile_picture_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    native_language: Mapped[str | None] = mapped_column(String(8), nullable=True)
    learning_language: Mapped[str | None] = mapped_column(String(8), nullable=True)

    @classmethod
    def with_password(cls, username: str, email: str, password_hash: str) -> "User":
        """Build an unverified password account."""
        return cls(
            username=username,
            email=email,
            password_hash=password_hash,
            auth_provider=AuthProvider.PASSWORD,
            email_verified=False,
        )

    @classmethod
    def federated(cls, username: str, email: str, external_id: str, picture: str | None = None) -> "User":
        """Build an account backed by the identity provider.

        The provider has already verified the email address.
        """
        return cls(
            username=username,
            email=email,
            google_id=external_id,
            auth_provider=AuthProvider.GOOGLE,
            email_verified=True,
            profile_picture_url=picture,
        )

    @property
    def credential(self) -> Credential:
        if self.password_hash is not None and self.google_id is not None:
            return LinkedCredential(password_hash=self.password_hash, external_id=self.google_id)
        if self.password_hash is not None:
            return PasswordCredential(password_hash=self.password_hash)
        if self.google_id is not None:
            return FederatedCredential(external_id=self.google_id)
        raise ValueError(f"User {self.id} has no credential")

    def link_federated(self, external_id: str, picture: str | None = None) -> None:
        """Attach an identity-provider account to this user."""
        self.google_id = external_id
        self.auth_provider = AuthProvider.GOOGLE
        self.email_verified = True
        if picture:
            self.profile_picture_url = picture


class UserStats(Base):
    """Per-user learning statistics, created alongside the user."""

    __tablename__ = "user_stats"

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    cards_studied: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_studied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
