"""Application settings and configuration."""

import logging
from enum import StrEnum
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from matcha_auth.config.cors_config import CORSConfiguration, CORSConfigurationError

logger = logging.getLogger(__name__)


class Environment(StrEnum):
    """Deployment environment. Production is the default for safety."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Matcha Auth"
    app_version: str = "0.1.0"

    environment: Environment = Environment.PRODUCTION

    # Database
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False
    database_auto_create: bool = False

    # API
    api_prefix: str = ""

    # Frontend & CORS
    frontend_url: str = "http://localhost:8080"
    allowed_origins: str = "http://localhost:8080"

    # Access tokens
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Refresh sessions
    refresh_token_expiry_days: int = 30

    # Cookies
    cookie_secret: str
    cookie_domain: str | None = None
    oidc_flow_expiry_minutes: int = 10

    # Federated identity provider (Google OIDC)
    google_client_id: str = ""
    google_client_secret: str = ""
    redirect_url: str = ""
    oidc_issuer_url: str = "https://accounts.google.com"
    oidc_http_timeout_seconds: float = 10.0

    # Password hashing (Argon2)
    password_hash_time_cost: int = 3
    password_hash_memory_cost: int = 65536
    password_hash_workers: int = 4

    # Action tokens
    email_verification_ttl_hours: int = 24
    password_reset_ttl_hours: int = 1

    # Rate limiting (token buckets per client IP and tier)
    rate_limit_enabled: bool = True
    rate_limit_sensitive_per_second: float = 2.0
    rate_limit_sensitive_burst: int = 3
    rate_limit_auth_per_second: float = 5.0
    rate_limit_auth_burst: int = 5
    rate_limit_general_per_second: float = 10.0
    rate_limit_general_burst: int = 20

    # Minimum response duration for sensitive and auth endpoints
    timing_floor_ms: int = 250

    # Background jobs
    background_jobs_enabled: bool = True
    token_cleanup_initial_delay_seconds: int = 3600
    token_cleanup_interval_seconds: int = 21600
    unverified_cleanup_initial_delay_seconds: int = 7200
    unverified_cleanup_interval_seconds: int = 86400
    unverified_account_max_age_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Normalize the environment name."""
        return str(v).lower()

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Require a signing secret long enough for HS256."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v

    @field_validator("cookie_secret")
    @classmethod
    def validate_cookie_secret(cls, v: str) -> str:
        """Require enough key material for cookie encryption."""
        if len(v) < 64:
            raise ValueError("COOKIE_SECRET must be at least 64 characters long")
        return v

    @field_validator("allowed_origins")
    @classmethod
    def validate_allowed_origins(cls, v: str) -> str:
        """Reject an empty origin list."""
        if not v.strip():
            raise ValueError("ALLOWED_ORIGINS cannot be empty")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    def get_cors_configuration(self) -> CORSConfiguration:
        """Get CORS configuration based on environment settings.

        Raises:
            CORSConfigurationError: If CORS configuration is invalid or insecure.

        """
        try:
            return CORSConfiguration.build(self.allowed_origins, development=self.is_development)
        except CORSConfigurationError as exc:
            logger.error(f"Failed to create CORS configuration: {exc}")
            raise


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()  # type: ignore[call-arg]


settings = get_settings()
