"""Application settings loaded from environment variables.

Environment Configuration:
    CHATRELAY_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    JWT_SECRET: HS256 session signing secret (required in staging/prod)
    LOG_LEVEL: Root log level name (default INFO)
    LOG_JSON: JSON log lines when true, console rendering when false

Provider Configuration:
    OPENROUTER_API_KEY: Bearer key for the chat-completions provider
    OPENROUTER_BASE_URL: Provider API root (chat/completions and models live below it)
    OPENROUTER_HTTP_REFERER / OPENROUTER_APP_TITLE: Optional attribution headers
    DEFAULT_MODEL: Model used when a chat request does not name one
    CHAT_TIMEOUT_MS: Idle window for streams, total deadline for non-stream calls

Attachment Limits:
    MAX_TEXT_ATTACHMENTS: Max non-image files read per turn
    MAX_TEXT_ATTACHMENT_CHARS: Total extracted characters per turn
    MAX_TEXT_ATTACHMENT_CHARS_PER_FILE: Extracted characters per file per turn
    MAX_IMAGE_BYTES: Combined byte ceiling for inlined images
    MAX_UPLOAD_BYTES: Ceiling for a single stored file

Note: OPENROUTER_API_KEY is not validated at startup. A missing key
surfaces as OPENROUTER_KEY_MISSING on the first call that needs it.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Only used in local/test when JWT_SECRET is not configured
DEV_JWT_SECRET = "chatrelay-dev-secret-change-me-0123456789"


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - JWT_SECRET is required in staging and prod only
    - All size and count limits must be positive
    """

    chatrelay_env: Environment = Field(default=Environment.LOCAL, alias="CHATRELAY_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Session settings
    jwt_secret: str | None = Field(default=None, alias="JWT_SECRET")
    session_cookie_name: str = Field(default="token", alias="SESSION_COOKIE_NAME")
    session_ttl_s: int = Field(default=7 * 24 * 3600, alias="SESSION_TTL_S")
    cors_origin: str | None = Field(default=None, alias="CORS_ORIGIN")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Provider settings
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL"
    )
    openrouter_http_referer: str | None = Field(default=None, alias="OPENROUTER_HTTP_REFERER")
    openrouter_app_title: str | None = Field(default=None, alias="OPENROUTER_APP_TITLE")
    default_model: str = Field(default="openai/gpt-4o-mini", alias="DEFAULT_MODEL")
    chat_timeout_ms: int = Field(default=300_000, alias="CHAT_TIMEOUT_MS")  # 5 minutes
    upstream_connect_timeout_s: float = Field(default=10.0, alias="UPSTREAM_CONNECT_TIMEOUT_S")

    # Attachment limits
    max_text_attachments: int = Field(default=5, alias="MAX_TEXT_ATTACHMENTS")
    max_text_attachment_chars: int = Field(default=220_000, alias="MAX_TEXT_ATTACHMENT_CHARS")
    max_text_attachment_chars_per_file: int = Field(
        default=80_000, alias="MAX_TEXT_ATTACHMENT_CHARS_PER_FILE"
    )
    max_image_bytes: int = Field(default=8 * 1024 * 1024, alias="MAX_IMAGE_BYTES")  # 8 MB
    max_upload_bytes: int = Field(default=25 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")  # 25 MB
    upload_dir: str = Field(default="./data/uploads", alias="UPLOAD_DIR")

    # Model catalog pricing cache
    pricing_cache_ttl_s: int = Field(default=3600, alias="PRICING_CACHE_TTL_S")
    pricing_retry_after_s: int = Field(default=60, alias="PRICING_RETRY_AFTER_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure limits are sane and secrets exist where required."""
        non_positive = [
            name
            for name, value in (
                ("CHAT_TIMEOUT_MS", self.chat_timeout_ms),
                ("MAX_TEXT_ATTACHMENTS", self.max_text_attachments),
                ("MAX_TEXT_ATTACHMENT_CHARS", self.max_text_attachment_chars),
                ("MAX_TEXT_ATTACHMENT_CHARS_PER_FILE", self.max_text_attachment_chars_per_file),
                ("MAX_IMAGE_BYTES", self.max_image_bytes),
                ("MAX_UPLOAD_BYTES", self.max_upload_bytes),
                ("PRICING_CACHE_TTL_S", self.pricing_cache_ttl_s),
            )
            if value <= 0
        ]
        if non_positive:
            raise ValueError(f"Settings must be positive: {', '.join(non_positive)}")

        # JWT_SECRET is required only in staging/prod
        if self.chatrelay_env in (Environment.STAGING, Environment.PROD):
            if not self.jwt_secret:
                raise ValueError(
                    f"JWT_SECRET is required for CHATRELAY_ENV={self.chatrelay_env.value}"
                )

        return self

    @property
    def effective_jwt_secret(self) -> str:
        """Return the configured session secret, or the dev secret in local/test."""
        return self.jwt_secret or DEV_JWT_SECRET

    @property
    def chat_timeout_s(self) -> float:
        """CHAT_TIMEOUT_MS expressed in seconds."""
        return self.chat_timeout_ms / 1000

    @property
    def normalized_base_url(self) -> str:
        """Return the provider base URL with trailing slash stripped."""
        return self.openrouter_base_url.rstrip("/")

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origin:
            return [o.strip() for o in self.cors_origin.split(",") if o.strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
