"""Balance netting over open loans.

Collapses every non-settled loan into at most one directional balance per
pair of users. Netting is a read over the current snapshot of loans and
payments; it takes no locks and is only as consistent as that snapshot.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, NamedTuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_engine.models.loan import Loan, LoanStatus
from expense_engine.models.loan_payment import LoanPayment
from expense_engine.money import ZERO, round_money

logger = logging.getLogger(__name__)


class UserPair(NamedTuple):
    """Unordered pair of users, normalized so that ``low < high``."""

    low: int
    high: int

    @classmethod
    def of(cls, a: int, b: int) -> "UserPair":
        return cls(a, b) if a < b else cls(b, a)


class Debt(NamedTuple):
    """``debtor_id`` owes ``creditor_id`` the given amount."""

    debtor_id: int
    creditor_id: int
    amount: Decimal


class PairwiseBalance(NamedTuple):
    """Net balance: ``from_user_id`` owes ``to_user_id`` ``amount``."""

    from_user_id: int
    to_user_id: int
    amount: Decimal


class UserBalance(NamedTuple):
    """Per-user totals.

    ``amount_to_pay`` is what this user must pay others, ``amount_to_receive``
    is what others must pay this user.
    """

    user_id: int
    amount_to_pay: Decimal
    amount_to_receive: Decimal

    @property
    def net(self) -> Decimal:
        """Positive when the user is owed more than they owe."""
        return self.amount_to_receive - self.amount_to_pay


def net_balances(debts: Iterable[Debt]) -> list[PairwiseBalance]:
    """Net directional debts into at most one balance per user pair.

    Debts are folded in the given order. A debt against an opposite entry
    reduces it, flips it when larger, or removes it when equal. Debts with a
    non-positive amount are ignored.

    Returns:
        Balances with a non-zero amount, sorted by (from_user_id, to_user_id)
    """
    entries: Dict[UserPair, Debt] = {}

    for debt in debts:
        if debt.amount <= 0:
            continue

        key = UserPair.of(debt.debtor_id, debt.creditor_id)
        existing = entries.get(key)

        if existing is None:
            entries[key] = debt
        elif existing.debtor_id == debt.debtor_id:
            entries[key] = existing._replace(amount=existing.amount + debt.amount)
        elif debt.amount > existing.amount:
            entries[key] = debt._replace(amount=debt.amount - existing.amount)
        elif debt.amount < existing.amount:
            entries[key] = existing._replace(amount=existing.amount - debt.amount)
        else:
            del entries[key]

    balances = [
        PairwiseBalance(entry.debtor_id, entry.creditor_id, round_money(entry.amount))
        for entry in entries.values()
    ]
    return sorted(
        (b for b in balances if b.amount > 0),
        key=lambda b: (b.from_user_id, b.to_user_id),
    )


def summarize_user(user_id: int, balances: Iterable[PairwiseBalance]) -> UserBalance:
    """Sum the balances a user takes part in."""
    to_pay = ZERO
    to_receive = ZERO
    for balance in balances:
        if balance.from_user_id == user_id:
            to_pay += balance.amount
        elif balance.to_user_id == user_id:
            to_receive += balance.amount
    return UserBalance(user_id, to_pay, to_receive)


class BalanceService:
    """Service computing who owes whom from the loan ledger."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def open_debts(self) -> list[Debt]:
        """Remaining debt of every non-settled loan, oldest loan first."""
        paid = (
            select(LoanPayment.loan_id, func.sum(LoanPayment.amount).label("total_paid"))
            .group_by(LoanPayment.loan_id)
            .subquery()
        )
        stmt = (
            select(Loan, paid.c.total_paid)
            .outerjoin(paid, paid.c.loan_id == Loan.id)
            .where(Loan.status != LoanStatus.SETTLED)
            .order_by(Loan.created_at.asc(), Loan.id.asc())
        )

        debts = []
        for loan, total_paid in self.db.execute(stmt).all():
            remaining = loan.amount - (total_paid if total_paid is not None else ZERO)
            if remaining <= 0:
                continue
            debts.append(Debt(loan.borrower_id, loan.lender_id, remaining))
        return debts

    def get_balances(self) -> list[PairwiseBalance]:
        """Net pairwise balances over all open and partially paid loans."""
        debts = self.open_debts()
        balances = net_balances(debts)
        logger.debug("Netted %d open loan(s) into %d balance(s)", len(debts), len(balances))
        return balances

    def get_user_balance(self, user_id: int) -> UserBalance:
        """Amounts a user must pay and receive after netting."""
        return summarize_user(user_id, self.get_balances())


__all__ = [
    "BalanceService",
    "Debt",
    "PairwiseBalance",
    "UserBalance",
    "UserPair",
    "net_balances",
    "summarize_user",
]
