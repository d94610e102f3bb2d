"""Tests for configuration settings."""
import pytest
from pydantic import ValidationError

from kerdar.config.settings import Settings, get_settings, reset_settings


class TestSettings:
    """Test Settings configuration."""

    def test_settings_default_values(self, monkeypatch):
        """Test default values are set correctly."""
        monkeypatch.delenv("KERDAR_CANCEL_POLL_INTERVAL_S", raising=False)
        monkeypatch.delenv("KERDAR_LOG_JSON", raising=False)

        settings = Settings(_env_file=None)

        # env is set to 'test' in conftest.py
        assert settings.env in ("development", "test")
        assert settings.log_level == "INFO"
        assert settings.log_json is True

        assert settings.default_node_timeout_s == 60.0
        assert settings.default_max_concurrency == 1
        assert settings.cancel_poll_interval_s == 0.01
        assert settings.max_retry_wait_s == 300.0
        assert settings.http_timeout_s == 30.0

    def test_settings_env_prefix(self, monkeypatch):
        """Test that KERDAR_ prefix works for environment variables."""
        monkeypatch.setenv("KERDAR_ENV", "production")
        monkeypatch.setenv("KERDAR_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("KERDAR_DEFAULT_MAX_CONCURRENCY", "4")

        settings = Settings()

        assert settings.env == "production"
        assert settings.log_level == "DEBUG"
        assert settings.default_max_concurrency == 4

    @pytest.mark.parametrize(
        "field", ["default_node_timeout_s", "cancel_poll_interval_s", "http_timeout_s"]
    )
    def test_durations_must_be_positive(self, field):
        """Test that zero or negative durations are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(**{field: 0})

        assert "durations must be positive" in str(exc_info.value)

    def test_concurrency_validation(self):
        """Test that default_max_concurrency must be at least one."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(default_max_concurrency=0)

        assert "default_max_concurrency must be >= 1" in str(exc_info.value)


class TestGlobalSettings:
    """Test the cached settings instance."""

    def test_get_settings_is_cached(self):
        """Test that get_settings returns the same instance until reset."""
        first = get_settings()
        assert get_settings() is first

        reset_settings()
        assert get_settings() is not first

    def test_reset_picks_up_environment(self, monkeypatch):
        """Test that a reset re-reads the environment."""
        get_settings()
        monkeypatch.setenv("KERDAR_HTTP_TIMEOUT_S", "5")

        reset_settings()

        assert get_settings().http_timeout_s == 5.0
