"""Loan ledger: loans between household members and their repayments.

A loan's status is derived from its repayments and never set directly
except to OPEN at creation. Repayments are serialized per loan with a
compare-and-set on the loan's running ``amount_paid`` total.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from expense_engine.errors import (
    ConcurrentModificationError,
    ExceedsBalanceError,
    NotFoundError,
    ValidationError,
)
from expense_engine.models.loan import Loan, LoanStatus
from expense_engine.models.loan_payment import LoanPayment
from expense_engine.money import ZERO, MoneyInput, to_money
from expense_engine.services.audit_service import AuditService
from expense_engine.services.user_service import UserDirectory

logger = logging.getLogger(__name__)


def derive_loan_status(amount: Decimal, paid: Decimal) -> LoanStatus:
    """Status of a loan of ``amount`` with ``paid`` repaid so far."""
    if paid <= 0:
        return LoanStatus.OPEN
    if paid >= amount:
        return LoanStatus.SETTLED
    return LoanStatus.PARTIAL


class LoanService:
    """Service for loans and loan payments."""

    def __init__(self, db: Session, directory: Optional[UserDirectory] = None):
        """Initialize with database session."""
        self.db = db
        self.directory = directory or UserDirectory(db)

    def create_loan(
        self,
        lender_id: int,
        borrower_id: int,
        amount: MoneyInput,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> Loan:
        """Record money lent by ``lender_id`` to ``borrower_id``.

        Raises:
            ValidationError: If lender and borrower are the same or the amount
                is not positive
            NotFoundError: If either user does not exist
        """
        if lender_id == borrower_id:
            raise ValidationError(
                "lender and borrower cannot be the same user",
                lender_id=lender_id,
                borrower_id=borrower_id,
            )

        loan_amount = to_money(amount)
        if loan_amount <= 0:
            raise ValidationError("loan amount must be positive", amount=amount)

        for user_id in (lender_id, borrower_id):
            self.directory.require_user(user_id)

        loan = Loan(
            lender_id=lender_id,
            borrower_id=borrower_id,
            amount=loan_amount,
            amount_paid=ZERO,
            status=LoanStatus.OPEN,
            note=note,
        )
        self.db.add(loan)
        self.db.flush()
        AuditService.log(self.db, "loan", loan.id, "create", actor_id, {"amount": str(loan_amount)})
        self.db.commit()

        logger.info(
            "Created loan: id=%d, lender=%d, borrower=%d, amount=%s",
            loan.id,
            lender_id,
            borrower_id,
            loan_amount,
        )
        return loan

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        """Get loan by ID, None if absent."""
        return self.db.get(Loan, loan_id)

    def require_loan(self, loan_id: int) -> Loan:
        """Get loan by ID.

        Raises:
            NotFoundError: If the loan does not exist
        """
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found", loan_id=loan_id)
        return loan

    def list_loans(self, status: LoanStatus | None = None) -> list[Loan]:
        """List loans, newest first."""
        stmt = select(Loan).order_by(Loan.created_at.desc(), Loan.id.desc())
        if status is not None:
            stmt = stmt.where(Loan.status == LoanStatus(status))
        return list(self.db.scalars(stmt).all())

    def list_payments(self, loan_id: int) -> list[LoanPayment]:
        """Payments of a loan in payment order."""
        stmt = (
            select(LoanPayment)
            .where(LoanPayment.loan_id == loan_id)
            .order_by(LoanPayment.paid_at.asc(), LoanPayment.id.asc())
        )
        return list(self.db.scalars(stmt).all())

    def total_paid(self, loan_id: int) -> Decimal:
        """Sum of the recorded payments of a loan."""
        total = self.db.scalar(
            select(func.sum(LoanPayment.amount)).where(LoanPayment.loan_id == loan_id)
        )
        return total if total is not None else ZERO

    def remaining_balance(self, loan_id: int) -> Decimal:
        """Amount the borrower still owes.

        Raises:
            NotFoundError: If the loan does not exist
        """
        loan = self.require_loan(loan_id)
        return loan.amount - self.total_paid(loan.id)

    def create_loan_payment(
        self,
        loan_id: int,
        amount: MoneyInput,
        paid_at: datetime | None = None,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> LoanPayment:
        """Record a repayment and update the loan status.

        Raises:
            NotFoundError: If the loan does not exist
            ValidationError: If the amount is not positive
            ExceedsBalanceError: If the amount is larger than what remains,
                which includes any payment on a settled loan
            ConcurrentModificationError: If another payment was recorded for
                the loan between the balance check and the write
        """
        loan = self.require_loan(loan_id)
        payment_amount = to_money(amount)
        if payment_amount <= 0:
            raise ValidationError("payment amount must be positive", amount=amount)

        paid_before = self.total_paid(loan.id)
        remaining = loan.amount - paid_before
        if payment_amount > remaining:
            logger.warning(
                "Rejected payment of %s on loan %d: remaining balance is %s",
                payment_amount,
                loan.id,
                remaining,
            )
            raise ExceedsBalanceError(
                f"payment amount ({payment_amount}) exceeds remaining balance ({remaining})",
                loan_id=loan.id,
                amount=payment_amount,
                remaining=remaining,
            )

        paid_after = paid_before + payment_amount
        new_status = derive_loan_status(loan.amount, paid_after)

        try:
            result = self.db.execute(
                update(Loan)
                .where(Loan.id == loan.id, Loan.amount_paid == paid_before)
                .values(
                    amount_paid=paid_after,
                    status=new_status,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrentModificationError(
                    f"Loan {loan_id} was paid concurrently; retry the payment",
                    loan_id=loan_id,
                )

            payment = LoanPayment(
                loan_id=loan.id,
                amount=payment_amount,
                paid_at=paid_at or datetime.now(timezone.utc),
                note=note,
            )
            self.db.add(payment)
            self.db.flush()
            AuditService.log(
                self.db,
                "loan",
                loan.id,
                "payment",
                actor_id,
                {"payment_id": payment.id, "amount": str(payment_amount), "status": new_status.value},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(loan)
        logger.info(
            "Recorded payment %d on loan %d: amount=%s, paid=%s/%s, status=%s",
            payment.id,
            loan.id,
            payment_amount,
            paid_after,
            loan.amount,
            new_status.value,
        )
        return payment


__all__ = ["LoanService", "derive_loan_status"]
