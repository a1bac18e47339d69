"""Loan payment ORM model for partial or full repayments."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Money


class LoanPayment(Base, BaseModel):
    """Repayment towards a loan."""

    __tablename__ = "loan_payments"

    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    loan: Mapped["Loan"] = relationship("Loan", back_populates="payments")  # noqa: F821

    def __repr__(self) -> str:
        return f"<LoanPayment(id={self.id}, loan_id={self.loan_id}, amount={self.amount})>"


__all__ = ["LoanPayment"]
