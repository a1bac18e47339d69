"""Recurring bill template ORM models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.allocation import SubjectType
from expense_engine.models.types import Money, Percentage


class Frequency(str, Enum):
    """How often a template produces a bill."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        """Length of one period in months."""
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]


class TemplateAllocationType(str, Enum):
    """How a template share is expressed."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FRACTION = "fraction"


class RecurringBillTemplate(Base, BaseModel):
    """
    Rule that spawns a new bill every period with predefined shares.

    Templates are never deleted: deactivation keeps the generation history
    reachable through Bill.recurring_template_id.
    """

    __tablename__ = "recurring_bill_templates"

    custom_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Bill name used as custom_type of generated bills (e.g. 'Rent')",
    )
    frequency: Mapped[Frequency] = mapped_column(SQLEnum(Frequency), nullable=False)
    day_of_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Due day (1-31); clamped to the last day of shorter months",
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    next_due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    last_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    allocations: Mapped[list["TemplateAllocation"]] = relationship(
        "TemplateAllocation",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateAllocation.position",
    )

    __table_args__ = (Index("idx_template_active_due", "is_active", "next_due_date"),)

    def __repr__(self) -> str:
        return (
            f"<RecurringBillTemplate(id={self.id}, custom_type={self.custom_type}, "
            f"frequency={self.frequency}, next_due_date={self.next_due_date}, is_active={self.is_active})>"
        )


class TemplateAllocation(Base, BaseModel):
    """One subject's share in a recurring bill template."""

    __tablename__ = "template_allocations"

    template_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_bill_templates.id"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subject_type: Mapped[SubjectType] = mapped_column(SQLEnum(SubjectType), nullable=False)
    subject_id: Mapped[int] = mapped_column(nullable=False)
    allocation_type: Mapped[TemplateAllocationType] = mapped_column(
        SQLEnum(TemplateAllocationType),
        nullable=False,
    )

    fixed_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(
        Percentage,
        nullable=True,
        comment="Share in percent (0, 100]",
    )
    fraction_num: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fraction_denom: Mapped[int | None] = mapped_column(Integer, nullable=True)

    template: Mapped["RecurringBillTemplate"] = relationship(
        "RecurringBillTemplate",
        back_populates="allocations",
    )

    def __repr__(self) -> str:
        return (
            f"<TemplateAllocation(template_id={self.template_id}, "
            f"subject={self.subject_type}:{self.subject_id}, type={self.allocation_type})>"
        )


__all__ = [
    "RecurringBillTemplate",
    "TemplateAllocation",
    "TemplateAllocationType",
    "Frequency",
]
