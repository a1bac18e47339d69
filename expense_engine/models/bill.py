"""Bill ORM model for utility bills and shared expenses."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Money, Quantity


class BillType(str, Enum):
    """Types of bills that can be tracked."""

    ELECTRICITY = "electricity"
    GAS = "gas"
    INTERNET = "internet"
    SHARED = "shared"
    """Shared household budget (cleaning supplies, etc.)"""

    OTHER = "other"
    """Anything else; described by custom_type"""


class BillStatus(str, Enum):
    """Lifecycle state of a bill: draft -> posted -> closed."""

    DRAFT = "draft"
    POSTED = "posted"
    CLOSED = "closed"


class Bill(Base, BaseModel):
    """
    A recorded expense for a period whose total is allocated among subjects.

    Consumptions and allocations may only change while the bill is a draft.
    Posting freezes the allocations; closing makes the bill immutable.
    """

    __tablename__ = "bills"

    bill_type: Mapped[BillType] = mapped_column(
        SQLEnum(BillType),
        nullable=False,
        index=True,
        comment="Type of bill: electricity, gas, internet, shared or other",
    )
    custom_type: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Free-form type name for OTHER bills",
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Bill total in minor units",
    )
    total_units: Mapped[Decimal | None] = mapped_column(
        Quantity,
        nullable=True,
        comment="Total metered units (kWh, m3) if applicable",
    )

    status: Mapped[BillStatus] = mapped_column(
        SQLEnum(BillStatus),
        nullable=False,
        default=BillStatus.DRAFT,
        comment="draft, posted or closed",
    )
    payment_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    recurring_template_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurring_bill_templates.id"),
        nullable=True,
        index=True,
        comment="Template that generated this bill, if any",
    )

    # Relationships
    consumptions: Mapped[list["Consumption"]] = relationship(  # noqa: F821
        "Consumption",
        back_populates="bill",
        order_by="Consumption.id",
    )
    allocations: Mapped[list["Allocation"]] = relationship(  # noqa: F821
        "Allocation",
        back_populates="bill",
        order_by="Allocation.id",
    )
    recurring_template: Mapped["RecurringBillTemplate | None"] = relationship(  # noqa: F821
        "RecurringBillTemplate",
        foreign_keys=[recurring_template_id],
    )

    __table_args__ = (
        Index("idx_bill_type_status", "bill_type", "status"),
        Index("idx_bill_period", "period_start", "period_end"),
    )

    @property
    def display_type(self) -> str:
        """Custom type for OTHER bills, the type value otherwise."""
        if self.bill_type == BillType.OTHER and self.custom_type:
            return self.custom_type
        return self.bill_type.value

    def __repr__(self) -> str:
        return (
            f"<Bill(id={self.id}, bill_type={self.bill_type}, status={self.status}, "
            f"period={self.period_start}..{self.period_end}, total_amount={self.total_amount})>"
        )


__all__ = ["Bill", "BillType", "BillStatus"]
