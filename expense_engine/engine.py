"""Engine facade bundling the services over one database session."""

from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from expense_engine.config import EngineSettings, get_settings
from expense_engine.errors import ValidationError
from expense_engine.models.allocation import Allocation, AllocationMethod
from expense_engine.models.bill import Bill
from expense_engine.models.loan import Loan
from expense_engine.models.loan_payment import LoanPayment
from expense_engine.models.prediction import Prediction, PredictionTarget
from expense_engine.money import MoneyInput
from expense_engine.services.allocation_service import AllocationService, AllocationSubject
from expense_engine.services.balance_service import BalanceService, PairwiseBalance, UserBalance
from expense_engine.services.bill_service import BillService
from expense_engine.services.forecast_service import ForecastClient, ForecastService
from expense_engine.services.loan_service import LoanService
from expense_engine.services.recurring_bill_service import RecurringBillService
from expense_engine.services.user_service import UserDirectory


class ExpenseEngine:
    """Operations offered to the rest of the application.

    Every operation either commits fully or raises an EngineError subclass
    with nothing persisted.
    """

    def __init__(
        self,
        db: Session,
        forecast_client: Optional[ForecastClient] = None,
        settings: Optional[EngineSettings] = None,
    ):
        """Initialize with database session and optional forecast client."""
        self.db = db
        self.settings = settings or get_settings()
        self.directory = UserDirectory(db)
        self.bills = BillService(db, AllocationService(), self.directory)
        self.loans = LoanService(db, self.directory)
        self.balances = BalanceService(db)
        self.templates = RecurringBillService(db, self.directory)
        self.forecasts = (
            ForecastService(db, forecast_client, self.settings) if forecast_client is not None else None
        )

    def compute_allocations(
        self,
        bill_id: int,
        subjects: Iterable[AllocationSubject] | None,
        method: AllocationMethod,
        actor_id: int | None = None,
    ) -> list[Allocation]:
        """Allocate a draft bill's total across subjects."""
        return self.bills.compute_allocations(bill_id, subjects, method, actor_id)

    def post_bill(self, bill_id: int, actor_id: int | None = None) -> Bill:
        """Move a bill from draft to posted."""
        return self.bills.post_bill(bill_id, actor_id)

    def close_bill(self, bill_id: int, actor_id: int | None = None) -> Bill:
        """Move a bill from posted to closed."""
        return self.bills.close_bill(bill_id, actor_id)

    def create_loan(
        self,
        lender_id: int,
        borrower_id: int,
        amount: MoneyInput,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> Loan:
        return self.loans.create_loan(lender_id, borrower_id, amount, note, actor_id)

    def create_loan_payment(
        self,
        loan_id: int,
        amount: MoneyInput,
        paid_at: datetime | None = None,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> LoanPayment:
        return self.loans.create_loan_payment(loan_id, amount, paid_at, note, actor_id)

    def get_balances(self) -> list[PairwiseBalance]:
        """Net who-owes-whom over all open loans."""
        return self.balances.get_balances()

    def get_user_balance(self, user_id: int) -> UserBalance:
        """What a user must pay and receive after netting.

        Raises:
            NotFoundError: If the user does not exist
        """
        self.directory.require_user(user_id)
        return self.balances.get_user_balance(user_id)

    def generate_due_bills(self, now: datetime | date) -> list[Bill]:
        """Generate bills for every recurring template due at ``now``."""
        return self.templates.generate_due_bills(now)

    def recompute_prediction(
        self,
        target: PredictionTarget,
        horizon_months: int | None = None,
        actor_id: int | None = None,
    ) -> Prediction:
        """Forecast a target through the configured forecast client.

        Raises:
            ValidationError: If the engine was built without a forecast client
        """
        if self.forecasts is None:
            raise ValidationError("No forecast client configured")
        return self.forecasts.recompute_prediction(target, horizon_months, actor_id)


__all__ = ["ExpenseEngine"]
