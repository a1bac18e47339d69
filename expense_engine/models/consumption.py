"""Consumption ORM model for per-user usage readings on a bill."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Quantity


class ConsumptionSource(str, Enum):
    """Who entered the reading."""

    USER = "user"
    ADMIN = "admin"


class Consumption(Base, BaseModel):
    """Individual usage reading for one user on one bill.

    Records are never updated. A correction is a new record; the latest
    record per user supersedes earlier ones.
    """

    __tablename__ = "consumptions"

    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    units: Mapped[Decimal] = mapped_column(
        Quantity,
        nullable=False,
        comment="Consumed units for the bill period",
    )
    meter_value: Mapped[Decimal | None] = mapped_column(
        Quantity,
        nullable=True,
        comment="Raw meter reading, if the units were derived from one",
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    source: Mapped[ConsumptionSource] = mapped_column(
        SQLEnum(ConsumptionSource),
        nullable=False,
        default=ConsumptionSource.USER,
    )

    bill: Mapped["Bill"] = relationship("Bill", back_populates="consumptions")  # noqa: F821

    __table_args__ = (Index("idx_consumption_bill_user", "bill_id", "user_id"),)

    def __repr__(self) -> str:
        return (
            f"<Consumption(id={self.id}, bill_id={self.bill_id}, user_id={self.user_id}, "
            f"units={self.units}, source={self.source})>"
        )


__all__ = ["Consumption", "ConsumptionSource"]
