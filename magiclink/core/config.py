"""Application configuration loaded from environment variables.

Settings for the database, session hand-off, magic link policy defaults,
and email delivery. Uses pydantic-settings for validation and .env file
support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "magiclink_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "magiclink"
    database_user: str = "magiclink_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Session hand-off (JWT cookie issued after a successful sign-in)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "magiclink"
    auth_audience: str = "magiclink"
    auth_cookie_name: str = "magiclink.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""
    session_lifetime_minutes: int = 60

    # Magic link strategy defaults
    magic_link_identity_field: str = "email"
    magic_link_identity_comparison: Literal[
        "exact", "case_insensitive", "normalized"
    ] = "case_insensitive"
    magic_link_token_lifetime_minutes: int = 10
    magic_link_single_use: bool = True
    magic_link_prevent_hijacking: bool = True
    magic_link_registration_enabled: bool = False

    # Email (Resend)
    email_from: str = "noreply@example.com"
    resend_api_key: SecretStr = SecretStr("")

    # Frontend URL (redirect target after sign-in)
    frontend_url: str = "http://localhost:3000"

    # Backend URL (magic link emails must hit the API directly)
    backend_url: str = "http://localhost:8000"

    # Rate Limiting (Security)
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security and policy requirements.

        Checks:
        - Magic link and session lifetimes must be positive (all environments)
        - SameSite=None requires Secure flag (browser requirement)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        if self.magic_link_token_lifetime_minutes <= 0:
            msg = (
                "MAGIC_LINK_TOKEN_LIFETIME_MINUTES must be positive. "
                f"Got: {self.magic_link_token_lifetime_minutes}"
            )
            raise ValueError(msg)
        if self.session_lifetime_minutes <= 0:
            msg = (
                "SESSION_LIFETIME_MINUTES must be positive. "
                f"Got: {self.session_lifetime_minutes}"
            )
            raise ValueError(msg)

        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Session cookies are incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if not secret_value:
                msg = (
                    "AUTH_SECRET must be set in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)

        return self


settings = Settings()
