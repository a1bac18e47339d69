"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from expense_engine.models.allocation import Allocation, AllocationMethod, SubjectType  # noqa: E402
from expense_engine.models.audit_log import AuditLog  # noqa: E402
from expense_engine.models.bill import Bill, BillStatus, BillType  # noqa: E402
from expense_engine.models.consumption import Consumption, ConsumptionSource  # noqa: E402
from expense_engine.models.group import Group  # noqa: E402
from expense_engine.models.loan import Loan, LoanStatus  # noqa: E402
from expense_engine.models.loan_payment import LoanPayment  # noqa: E402
from expense_engine.models.prediction import Prediction, PredictionTarget  # noqa: E402
from expense_engine.models.recurring_bill_template import (  # noqa: E402
    Frequency,
    RecurringBillTemplate,
    TemplateAllocation,
    TemplateAllocationType,
)
from expense_engine.models.user import User  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "Group",
    "Bill",
    "BillType",
    "BillStatus",
    "Consumption",
    "ConsumptionSource",
    "Allocation",
    "AllocationMethod",
    "SubjectType",
    "Loan",
    "LoanStatus",
    "LoanPayment",
    "RecurringBillTemplate",
    "TemplateAllocation",
    "TemplateAllocationType",
    "Frequency",
    "Prediction",
    "PredictionTarget",
    "AuditLog",
]
