"""Prediction ORM model: stored response of the forecasting collaborator."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Integer, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Money, Quantity


class PredictionTarget(str, Enum):
    """Series that can be forecast."""

    ELECTRICITY = "electricity"
    GAS = "gas"
    SHARED_BUDGET = "shared_budget"


class Prediction(Base, BaseModel):
    """Forecast result for a target over a horizon of months."""

    __tablename__ = "predictions"

    target: Mapped[PredictionTarget] = mapped_column(SQLEnum(PredictionTarget), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    horizon_months: Mapped[int] = mapped_column(Integer, nullable=False)

    predicted_units: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    predicted_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    model_version: Mapped[str] = mapped_column(String(50), nullable=False)
    created_from: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="bills",
        comment="Source of the historical series",
    )

    def __repr__(self) -> str:
        return (
            f"<Prediction(id={self.id}, target={self.target}, horizon={self.horizon_months}, "
            f"predicted_amount={self.predicted_amount})>"
        )


__all__ = ["Prediction", "PredictionTarget"]
