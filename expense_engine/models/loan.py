"""Loan ORM model for money lent between household members."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Money


class LoanStatus(str, Enum):
    """Settlement status, derived from repayments."""

    OPEN = "open"
    PARTIAL = "partial"
    SETTLED = "settled"


class Loan(Base, BaseModel):
    """Direct debt from borrower to lender, independent of bills.

    ``amount_paid`` mirrors the sum of the loan's payments and doubles as the
    compare-and-set token that serializes concurrent repayments.
    """

    __tablename__ = "loans"

    lender_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    borrower_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        comment="Sum of repayments so far",
    )
    status: Mapped[LoanStatus] = mapped_column(
        SQLEnum(LoanStatus),
        nullable=False,
        default=LoanStatus.OPEN,
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    payments: Mapped[list["LoanPayment"]] = relationship(  # noqa: F821
        "LoanPayment",
        back_populates="loan",
        order_by="LoanPayment.id",
    )

    __table_args__ = (
        CheckConstraint("lender_id != borrower_id", name="ck_loan_distinct_parties"),
        CheckConstraint("amount > 0", name="ck_loan_positive_amount"),
        Index("idx_loan_status", "status"),
        Index("idx_loan_parties", "lender_id", "borrower_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Loan(id={self.id}, lender_id={self.lender_id}, borrower_id={self.borrower_id}, "
            f"amount={self.amount}, amount_paid={self.amount_paid}, status={self.status})>"
        )


__all__ = ["Loan", "LoanStatus"]
