"""Engine configuration from environment variables."""

import logging
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class EngineSettings(BaseSettings):
    """Engine settings loaded from environment variables and .env file."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./expense_engine.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/engine.log", description="Path to log file")

    # Money
    currency: str = Field(default="PLN", description="ISO currency code of all amounts")

    # Forecasting collaborator
    forecast_confidence_level: Decimal = Field(
        default=Decimal("0.95"), description="Confidence level passed to the forecaster"
    )
    forecast_default_horizon_months: int = Field(
        default=3, description="Horizon used when the caller does not pass one"
    )
    forecast_min_history: int = Field(
        default=3, description="Minimum number of historical bills required for a forecast"
    )


_settings_instance: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get or create the settings instance.

    Lazy so that environment variables set by the caller (or tests) before
    first use are honoured.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = EngineSettings()
        logger.debug("Loaded engine settings: database_url=%s", _settings_instance.database_url)
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None


__all__ = ["EngineSettings", "get_settings", "reset_settings"]
