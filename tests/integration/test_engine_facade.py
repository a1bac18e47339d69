"""End-to-end tests through the ExpenseEngine facade."""

from datetime import date
from decimal import Decimal

import pytest

from expense_engine.config import EngineSettings
from expense_engine.engine import ExpenseEngine
from expense_engine.errors import NotFoundError, ValidationError
from expense_engine.models.allocation import AllocationMethod, SubjectType
from expense_engine.models.bill import BillStatus, BillType
from expense_engine.models.loan import LoanStatus
from expense_engine.models.recurring_bill_template import Frequency, TemplateAllocationType
from expense_engine.services.allocation_service import AllocationSubject
from expense_engine.services.balance_service import PairwiseBalance
from expense_engine.services.recurring_bill_service import TemplateAllocationSpec


@pytest.fixture
def engine(db_session):
    """Engine without a forecast client."""
    return ExpenseEngine(db_session, settings=EngineSettings(_env_file=None))


class TestExpenseEngine:
    """Test the operations offered to the application."""

    def test_household_month(self, engine, users):
        alice, bob, carol = users["alice"].id, users["bob"].id, users["carol"].id

        bill = engine.bills.create_bill(
            BillType.ELECTRICITY, date(2024, 2, 1), date(2024, 2, 29), "120.00", "60"
        )
        engine.bills.record_consumption(bill.id, alice, "10")
        engine.bills.record_consumption(bill.id, bob, "20")
        engine.bills.record_consumption(bill.id, carol, "30")
        allocations = engine.compute_allocations(bill.id, None, AllocationMethod.PROPORTIONAL)
        assert [a.amount for a in allocations] == [Decimal("20.00"), Decimal("40.00"), Decimal("60.00")]

        assert engine.post_bill(bill.id).status == BillStatus.POSTED
        assert engine.close_bill(bill.id).status == BillStatus.CLOSED

        loan = engine.create_loan(alice, bob, "50.00", note="groceries")
        engine.create_loan(bob, alice, "30.00")
        payment = engine.create_loan_payment(loan.id, "5.00")
        assert payment.amount == Decimal("5.00")
        assert engine.loans.require_loan(loan.id).status == LoanStatus.PARTIAL

        assert engine.get_balances() == [PairwiseBalance(bob, alice, Decimal("15.00"))]
        alice_balance = engine.get_user_balance(alice)
        assert alice_balance.amount_to_receive == Decimal("15.00")
        assert alice_balance.amount_to_pay == Decimal("0.00")

    def test_generate_due_bills(self, engine, users):
        engine.templates.create_template(
            "Rent",
            Frequency.MONTHLY,
            31,
            "900.00",
            [
                TemplateAllocationSpec(
                    SubjectType.USER, u.id, TemplateAllocationType.FRACTION, fraction_num=1, fraction_denom=3
                )
                for u in users.values()
            ],
            today=date(2024, 1, 10),
        )

        bills = engine.generate_due_bills(date(2024, 2, 29))

        assert [(b.period_start, b.period_end) for b in bills] == [(date(2024, 1, 29), date(2024, 2, 29))]
        assert [a.amount for a in bills[0].allocations] == [Decimal("300.00")] * 3

    def test_user_balance_for_unknown_user(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_user_balance(12345)

    def test_forecast_requires_client(self, engine):
        with pytest.raises(ValidationError, match="No forecast client"):
            engine.recompute_prediction("gas")

    def test_subject_allocation_through_facade(self, engine, users):
        bill = engine.bills.create_bill(BillType.INTERNET, date(2024, 1, 1), date(2024, 1, 31), "60.00")
        subjects = [
            AllocationSubject(SubjectType.USER, users["alice"].id, amount=Decimal("45.00")),
            AllocationSubject(SubjectType.USER, users["bob"].id, amount=Decimal("15.00")),
        ]

        allocations = engine.compute_allocations(bill.id, subjects, AllocationMethod.OVERRIDE)

        assert sum(a.amount for a in allocations) == Decimal("60.00")
