"""Allocation ORM model: one subject's share of a bill."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Money, Quantity


class SubjectType(str, Enum):
    """Kind of party an allocation is charged to."""

    USER = "user"
    GROUP = "group"


class AllocationMethod(str, Enum):
    """How an allocation amount was computed."""

    PROPORTIONAL = "proportional"
    """By consumed units"""

    EQUAL = "equal"
    """Same amount for every subject"""

    WEIGHT = "weight"
    """By subject weight (groups default to their configured weight)"""

    OVERRIDE = "override"
    """Exact amounts supplied by the caller"""

    TEMPLATE = "template"
    """Resolved from a recurring bill template (fixed/percentage/fraction)"""


class Allocation(Base, BaseModel):
    """Computed share of a bill's total for a user or group.

    For every method except TEMPLATE the amounts of a bill's allocations sum
    exactly to the bill total.
    """

    __tablename__ = "allocations"

    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), nullable=False, index=True)
    subject_type: Mapped[SubjectType] = mapped_column(SQLEnum(SubjectType), nullable=False)
    subject_id: Mapped[int] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    units: Mapped[Decimal] = mapped_column(
        Quantity,
        nullable=False,
        default=Decimal("0"),
        comment="Units (or weight) the amount was derived from",
    )
    method: Mapped[AllocationMethod] = mapped_column(SQLEnum(AllocationMethod), nullable=False)

    bill: Mapped["Bill"] = relationship("Bill", back_populates="allocations")  # noqa: F821

    __table_args__ = (Index("idx_allocation_subject", "subject_type", "subject_id"),)

    def __repr__(self) -> str:
        return (
            f"<Allocation(id={self.id}, bill_id={self.bill_id}, "
            f"subject={self.subject_type}:{self.subject_id}, amount={self.amount}, method={self.method})>"
        )


__all__ = ["Allocation", "AllocationMethod", "SubjectType"]
