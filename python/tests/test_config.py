"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from chatrelay.config import DEV_JWT_SECRET, Environment, Settings


def make_settings(**overrides) -> Settings:
    values = {"DATABASE_URL": "sqlite://", "CHATRELAY_ENV": "test"}
    values.update(overrides)
    return Settings(**values)


class TestSettingsDefaults:
    """Defaults for values the relay depends on."""

    def test_limits_defaults(self):
        """Attachment and timeout defaults."""
        settings = make_settings()

        assert settings.chat_timeout_ms == 300_000
        assert settings.max_text_attachments == 5
        assert settings.max_text_attachment_chars == 220_000
        assert settings.max_text_attachment_chars_per_file == 80_000
        assert settings.max_image_bytes == 8 * 1024 * 1024

    def test_chat_timeout_in_seconds(self):
        """CHAT_TIMEOUT_MS is exposed in seconds."""
        settings = make_settings(CHAT_TIMEOUT_MS=1500)
        assert settings.chat_timeout_s == 1.5

    def test_base_url_trailing_slash_stripped(self):
        """Provider base URL is normalized."""
        settings = make_settings(OPENROUTER_BASE_URL="https://example.test/api/v1/")
        assert settings.normalized_base_url == "https://example.test/api/v1"

    def test_cors_origin_list(self):
        """Comma-separated origins are split and trimmed."""
        settings = make_settings(CORS_ORIGIN="http://a.test, http://b.test ,")
        assert settings.cors_origin_list == ["http://a.test", "http://b.test"]

    def test_cors_origin_unset(self):
        """No CORS origin means no CORS middleware."""
        assert make_settings(CORS_ORIGIN=None).cors_origin_list == []

    def test_logging_defaults(self):
        settings = make_settings()
        assert settings.log_level == "INFO"
        assert settings.log_json is True

    def test_console_logging(self):
        settings = make_settings(LOG_JSON="false", LOG_LEVEL="debug")
        assert settings.log_json is False
        assert settings.log_level == "debug"


class TestSettingsValidation:
    """Validation rules enforced at load time."""

    def test_database_url_required(self, monkeypatch):
        """DATABASE_URL has no default."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValidationError):
            Settings(CHATRELAY_ENV="test")

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_jwt_secret_required_outside_local(self, env):
        """Staging and prod refuse to start without JWT_SECRET."""
        with pytest.raises(ValidationError, match="JWT_SECRET"):
            make_settings(CHATRELAY_ENV=env)

    def test_jwt_secret_accepted_in_prod(self):
        """A configured secret is used as is."""
        settings = make_settings(CHATRELAY_ENV="prod", JWT_SECRET="s" * 40)
        assert settings.chatrelay_env == Environment.PROD
        assert settings.effective_jwt_secret == "s" * 40

    def test_dev_secret_fallback(self):
        """Local/test fall back to the fixed dev secret."""
        assert make_settings().effective_jwt_secret == DEV_JWT_SECRET

    @pytest.mark.parametrize(
        "name",
        ["CHAT_TIMEOUT_MS", "MAX_TEXT_ATTACHMENTS", "MAX_IMAGE_BYTES", "PRICING_CACHE_TTL_S"],
    )
    def test_non_positive_limits_rejected(self, name):
        """Zero limits are configuration errors."""
        with pytest.raises(ValidationError, match=name):
            make_settings(**{name: 0})
