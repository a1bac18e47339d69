"""Integration tests for loans and loan payments."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from expense_engine.errors import (
    ConcurrentModificationError,
    ExceedsBalanceError,
    NotFoundError,
    ValidationError,
)
from expense_engine.models import AuditLog, LoanPayment
from expense_engine.models.loan import LoanStatus
from expense_engine.services.loan_service import LoanService, derive_loan_status


@pytest.fixture
def loan_service(db_session, directory):
    """Loan service bound to the test session."""
    return LoanService(db_session, directory)


@pytest.fixture
def loan(loan_service, users):
    """Alice lends Bob 100.00."""
    return loan_service.create_loan(users["alice"].id, users["bob"].id, "100.00")


class TestCreateLoan:
    """Test loan creation."""

    def test_created_open(self, loan):
        assert loan.status == LoanStatus.OPEN
        assert loan.amount == Decimal("100.00")
        assert loan.amount_paid == Decimal("0.00")

    def test_same_user_rejected(self, loan_service, users):
        with pytest.raises(ValidationError, match="same user"):
            loan_service.create_loan(users["alice"].id, users["alice"].id, "10.00")

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount_rejected(self, loan_service, users, amount):
        with pytest.raises(ValidationError, match="positive"):
            loan_service.create_loan(users["alice"].id, users["bob"].id, amount)

    def test_unknown_user_rejected(self, loan_service, users):
        with pytest.raises(NotFoundError):
            loan_service.create_loan(users["alice"].id, 999, "10.00")


class TestLoanPayments:
    """Test repayments and derived status."""

    def test_partial_then_settled(self, loan_service, loan):
        loan_service.create_loan_payment(loan.id, "40.00")
        assert loan_service.require_loan(loan.id).status == LoanStatus.PARTIAL

        loan_service.create_loan_payment(loan.id, "60.00", note="rest")
        settled = loan_service.require_loan(loan.id)
        assert settled.status == LoanStatus.SETTLED
        assert settled.amount_paid == Decimal("100.00")
        assert loan_service.remaining_balance(loan.id) == Decimal("0.00")

    def test_only_partial_payment(self, loan_service, loan):
        loan_service.create_loan_payment(loan.id, "40.00")

        assert loan_service.require_loan(loan.id).status == LoanStatus.PARTIAL
        assert loan_service.remaining_balance(loan.id) == Decimal("60.00")

    def test_payment_after_settlement_rejected(self, loan_service, loan):
        """40 + 60 settles the loan; a further 61 exceeds the zero balance."""
        loan_service.create_loan_payment(loan.id, "40.00")
        loan_service.create_loan_payment(loan.id, "60.00")

        with pytest.raises(ExceedsBalanceError) as exc_info:
            loan_service.create_loan_payment(loan.id, "61.00")

        assert exc_info.value.context["remaining"] == Decimal("0.00")
        assert loan_service.require_loan(loan.id).status == LoanStatus.SETTLED

    def test_overpayment_rejected_not_clamped(self, db_session, loan_service, loan):
        loan_service.create_loan_payment(loan.id, "40.00")

        with pytest.raises(ExceedsBalanceError) as exc_info:
            loan_service.create_loan_payment(loan.id, "61.00")

        assert exc_info.value.context["remaining"] == Decimal("60.00")
        assert len(loan_service.list_payments(loan.id)) == 1
        assert loan_service.require_loan(loan.id).status == LoanStatus.PARTIAL

    @pytest.mark.parametrize("amount", ["0.00", "-1.00"])
    def test_non_positive_payment_rejected(self, loan_service, loan, amount):
        with pytest.raises(ValidationError):
            loan_service.create_loan_payment(loan.id, amount)

    def test_missing_loan(self, loan_service):
        with pytest.raises(NotFoundError):
            loan_service.create_loan_payment(42, "1.00")

    def test_payment_fields_and_audit(self, db_session, loan_service, loan):
        paid_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        payment = loan_service.create_loan_payment(loan.id, "12.50", paid_at=paid_at, note="cash")

        stored = db_session.get(LoanPayment, payment.id)
        assert stored.amount == Decimal("12.50")
        assert stored.note == "cash"
        actions = db_session.scalars(
            select(AuditLog.action).where(AuditLog.entity_type == "loan").order_by(AuditLog.id)
        ).all()
        assert actions == ["create", "payment"]

    def test_stale_paid_total_loses_compare_and_set(self, db_session, loan_service, loan, monkeypatch):
        """A payment computed from an outdated total must not overwrite a newer one."""
        loan_service.create_loan_payment(loan.id, "60.00")
        monkeypatch.setattr(loan_service, "total_paid", lambda loan_id: Decimal("0.00"))

        with pytest.raises(ConcurrentModificationError):
            loan_service.create_loan_payment(loan.id, "60.00")

        monkeypatch.undo()
        assert loan_service.total_paid(loan.id) == Decimal("60.00")
        assert loan_service.require_loan(loan.id).amount_paid == Decimal("60.00")


class TestDeriveLoanStatus:
    """Test status derivation."""

    @pytest.mark.parametrize(
        "paid,status",
        [
            ("0.00", LoanStatus.OPEN),
            ("0.01", LoanStatus.PARTIAL),
            ("99.99", LoanStatus.PARTIAL),
            ("100.00", LoanStatus.SETTLED),
        ],
    )
    def test_derive(self, paid, status):
        assert derive_loan_status(Decimal("100.00"), Decimal(paid)) == status


class TestQueries:
    """Test loan lookups."""

    def test_get_and_filter_by_status(self, loan_service, loan, users):
        other = loan_service.create_loan(users["carol"].id, users["alice"].id, "20.00")
        loan_service.create_loan_payment(other.id, "20.00")

        assert loan_service.get_loan(loan.id) is loan
        assert loan_service.get_loan(9999) is None
        assert {item.id for item in loan_service.list_loans()} == {loan.id, other.id}
        assert [item.id for item in loan_service.list_loans(LoanStatus.SETTLED)] == [other.id]
        assert [item.id for item in loan_service.list_loans(LoanStatus.OPEN)] == [loan.id]
