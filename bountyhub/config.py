"""
BountyHub - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from bountyhub.auth.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        ENVIRONMENT: development, test or production
        SECRET_KEY: JWT signing key for access and refresh tokens
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime
        REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime (also cookie max-age)
        SESSION_EXPIRE_DAYS: Absolute session lifetime, fixed at login
        DATABASE_URL: SQLAlchemy URL for users, sessions and audit logs
        ALLOWED_ORIGINS: CORS allowed origins for the frontend
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    ENVIRONMENT: str = "development"

    # Security
    SECRET_KEY: str = ""  # Must be set via environment
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    SESSION_EXPIRE_DAYS: int = 7
    BCRYPT_WORK_FACTOR: int = 12
    REFRESH_REUSE_REVOKES_SESSION: bool = True

    # Refresh cookie
    REFRESH_COOKIE_NAME: str = "refreshToken"
    REFRESH_COOKIE_PATH: str = "/api/v1/auth"
    COOKIE_DOMAIN: Optional[str] = None

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./bountyhub.db"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def refresh_cookie_max_age(self) -> int:
        """Refresh cookie lifetime in seconds."""
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60


def require_signing_secret(config: Optional[Settings] = None) -> str:
    """
    Return the token signing secret or fail loudly.

    Called at startup and on every signing operation. A missing secret is a
    deployment error, never a per-request condition.

    Raises:
        ConfigurationError: SECRET_KEY is unset or empty
    """
    secret = (config or settings).SECRET_KEY
    if not secret:
        raise ConfigurationError("SECRET_KEY is not configured")
    return secret


settings = Settings()
