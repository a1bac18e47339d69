"""Tests for engine settings."""

from decimal import Decimal

from expense_engine.config import EngineSettings, get_settings, reset_settings


class TestEngineSettings:
    """Test settings loading from the environment."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = EngineSettings(_env_file=None)

        assert settings.database_url == "sqlite:///./expense_engine.db"
        assert settings.currency == "PLN"
        assert settings.forecast_confidence_level == Decimal("0.95")
        assert settings.forecast_default_horizon_months == 3
        assert settings.forecast_min_history == 3

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://engine@db/engine")
        monkeypatch.setenv("FORECAST_MIN_HISTORY", "6")

        settings = EngineSettings(_env_file=None)

        assert settings.database_url == "postgresql://engine@db/engine"
        assert settings.forecast_min_history == 6

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("CURRENCY", "EUR")
        first = get_settings()

        monkeypatch.setenv("CURRENCY", "USD")
        assert get_settings() is first
        assert first.currency == "EUR"

        reset_settings()
        assert get_settings().currency == "USD"
