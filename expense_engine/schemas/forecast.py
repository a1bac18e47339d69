"""Pydantic schemas for the forecasting collaborator."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from expense_engine.models.prediction import PredictionTarget


class ForecastRequest(BaseModel):
    """Historical series sent to the forecasting endpoint."""

    target: PredictionTarget
    historical_dates: list[datetime] = Field(..., description="Period start of each historical bill")
    historical_values: list[float] = Field(..., description="Units (utilities) or amounts (shared budget)")
    horizon_months: int = Field(..., ge=1)
    confidence_level: float = Field(0.95, gt=0, lt=1)
    cost_per_unit: float | None = Field(None, ge=0, description="Average historical cost per unit")

    model_config = ConfigDict(allow_inf_nan=False, frozen=True)

    @model_validator(mode="after")
    def check_series_lengths(self) -> "ForecastRequest":
        if len(self.historical_dates) != len(self.historical_values):
            raise ValueError("historical_dates and historical_values must have the same length")
        return self


class ForecastModelInfo(BaseModel):
    """Model that produced a forecast."""

    name: str
    version: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    fit_stats: dict[str, Any] = Field(default_factory=dict)


class ConfidenceInterval(BaseModel):
    """Per-period bounds of the predicted values."""

    lower: list[float] = Field(default_factory=list)
    upper: list[float] = Field(default_factory=list)


class ForecastResponse(BaseModel):
    """Typed response of the forecasting endpoint."""

    target: PredictionTarget
    model: ForecastModelInfo
    predicted_dates: list[datetime] = Field(..., min_length=1)
    predicted_values: list[float]
    confidence_interval: ConfidenceInterval = Field(default_factory=ConfidenceInterval)
    predicted_costs: list[float] = Field(default_factory=list)
    created_at: datetime | None = None

    model_config = ConfigDict(allow_inf_nan=False, protected_namespaces=())

    @model_validator(mode="after")
    def check_series_lengths(self) -> "ForecastResponse":
        if len(self.predicted_values) != len(self.predicted_dates):
            raise ValueError("predicted_values must have one value per predicted date")
        if self.predicted_costs and len(self.predicted_costs) != len(self.predicted_dates):
            raise ValueError("predicted_costs must be empty or have one value per predicted date")
        return self


__all__ = ["ForecastRequest", "ForecastModelInfo", "ConfidenceInterval", "ForecastResponse"]
