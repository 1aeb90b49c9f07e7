"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from outputcache.config import Environment, Settings, get_settings


class TestSettings:
    """Test Settings model and validation."""

    def test_default_settings_load_correctly(self):
        settings = Settings()

        assert settings.environment == Environment.DEV
        assert settings.debug is True  # Auto-set from DEV environment
        assert settings.output_cache_enabled is True
        assert settings.output_cache_duration_seconds == 60
        assert settings.output_cache_sliding_expiration is False
        assert settings.output_cache_vary_headers == ["accept-language"]
        assert settings.redis_url == ""

    def test_production_rejects_default_admin_token(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(environment=Environment.PROD)

        assert "ADMIN_TOKEN" in str(exc_info.value)

    def test_production_accepts_real_admin_token(self):
        settings = Settings(environment=Environment.PROD, admin_token="a-real-production-token")
        assert settings.is_prod is True
        assert settings.is_dev is False

    def test_is_dev_property_returns_true_for_test(self):
        settings = Settings(environment=Environment.TEST)
        assert settings.is_dev is True
        assert settings.is_prod is False

    @pytest.mark.parametrize("duration", [0, -1])
    def test_duration_must_be_positive(self, duration):
        with pytest.raises(ValidationError):
            Settings(output_cache_duration_seconds=duration)

    def test_json_logs_follow_environment_unless_forced(self):
        assert Settings(environment=Environment.TEST).json_logs is False
        assert Settings(environment=Environment.TEST, log_json=True).json_logs is True
        prod = Settings(environment=Environment.PROD, admin_token="a-real-production-token")
        assert prod.json_logs is True

    def test_settings_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("OUTPUT_CACHE_DURATION_SECONDS", "120")
        monkeypatch.setenv("OUTPUT_CACHE_SLIDING_EXPIRATION", "true")
        monkeypatch.setenv("OUTPUT_CACHE_VARY_HEADERS", '["accept-language", "x-region"]')

        settings = Settings()

        assert settings.output_cache_duration_seconds == 120
        assert settings.output_cache_sliding_expiration is True
        assert settings.output_cache_vary_headers == ["accept-language", "x-region"]

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()

    def test_environment_enum_values(self):
        assert Environment.DEV == "dev"
        assert Environment.PROD == "prod"
        assert Environment.TEST == "test"
