"""Bill lifecycle service: creation, consumptions, allocations and transitions.

States are linear: draft -> posted -> closed. Consumptions and allocations
may only change while a bill is a draft; a closed bill rejects every
mutation with ImmutableError. Transitions are conditional updates on the
expected status so that concurrent callers cannot both succeed.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from expense_engine.errors import (
    AllocationMismatchError,
    ImmutableError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from expense_engine.models.allocation import Allocation, AllocationMethod, SubjectType
from expense_engine.models.bill import Bill, BillStatus, BillType
from expense_engine.models.consumption import Consumption, ConsumptionSource
from expense_engine.money import MoneyInput, to_money, to_units
from expense_engine.services.allocation_service import AllocationService, AllocationSubject
from expense_engine.services.audit_service import AuditService
from expense_engine.services.user_service import UserDirectory

logger = logging.getLogger(__name__)

UPDATABLE_BILL_FIELDS = {
    "period_start",
    "period_end",
    "total_amount",
    "total_units",
    "custom_type",
    "payment_deadline",
    "notes",
}


class BillService:
    """Service for bill database operations.

    Encapsulates Bill, Consumption and Allocation persistence and gates every
    mutation on the bill's lifecycle state.
    """

    def __init__(
        self,
        db: Session,
        allocation_service: Optional[AllocationService] = None,
        directory: Optional[UserDirectory] = None,
    ):
        """Initialize with database session."""
        self.db = db
        self.allocation_service = allocation_service or AllocationService()
        self.directory = directory or UserDirectory(db)

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def create_bill(
        self,
        bill_type: BillType,
        period_start: date,
        period_end: date,
        total_amount: MoneyInput,
        total_units: MoneyInput | None = None,
        custom_type: str | None = None,
        payment_deadline: date | None = None,
        notes: str | None = None,
        actor_id: int | None = None,
    ) -> Bill:
        """Create a new bill in draft status.

        Raises:
            ValidationError: If the period is inverted, the total negative or
                an OTHER bill has no custom type
        """
        bill_type = BillType(bill_type)
        amount = to_money(total_amount, field="total_amount")
        units = to_units(total_units, field="total_units") if total_units is not None else None
        self._validate_bill_fields(bill_type, period_start, period_end, amount, units, custom_type)

        bill = Bill(
            bill_type=bill_type,
            custom_type=custom_type,
            period_start=period_start,
            period_end=period_end,
            total_amount=amount,
            total_units=units,
            payment_deadline=payment_deadline,
            notes=notes,
            status=BillStatus.DRAFT,
        )
        self.db.add(bill)
        self.db.flush()
        AuditService.log(self.db, "bill", bill.id, "create", actor_id, {"total_amount": str(amount)})
        self.db.commit()

        logger.info(
            "Created bill: id=%d, type=%s, period=%s..%s, total=%s",
            bill.id,
            bill.display_type,
            period_start,
            period_end,
            amount,
        )
        return bill

    def get_bill(self, bill_id: int) -> Optional[Bill]:
        """Get bill by ID, None if absent."""
        return self.db.get(Bill, bill_id)

    def require_bill(self, bill_id: int) -> Bill:
        """Get bill by ID.

        Raises:
            NotFoundError: If the bill does not exist
        """
        bill = self.get_bill(bill_id)
        if bill is None:
            raise NotFoundError(f"Bill {bill_id} not found", bill_id=bill_id)
        return bill

    def list_bills(
        self,
        bill_type: BillType | None = None,
        status: BillStatus | None = None,
    ) -> list[Bill]:
        """List bills ordered by period start, newest first."""
        stmt = select(Bill).order_by(Bill.period_start.desc(), Bill.id.desc())
        if bill_type is not None:
            stmt = stmt.where(Bill.bill_type == BillType(bill_type))
        if status is not None:
            stmt = stmt.where(Bill.status == BillStatus(status))
        return list(self.db.scalars(stmt).all())

    def update_bill(self, bill_id: int, actor_id: int | None = None, **changes) -> Bill:
        """Update fields of a draft bill.

        Changing total_amount or total_units clears the bill's allocations;
        they must be computed again before posting.

        Raises:
            ValidationError: If an unknown field is passed or the result is invalid
            InvalidStateError: If the bill is posted
            ImmutableError: If the bill is closed
        """
        unknown = set(changes) - UPDATABLE_BILL_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update bill fields: {', '.join(sorted(unknown))}")

        bill = self.require_bill(bill_id)
        self._ensure_draft(bill, "update")

        if "total_amount" in changes:
            changes["total_amount"] = to_money(changes["total_amount"], field="total_amount")
        if changes.get("total_units") is not None:
            changes["total_units"] = to_units(changes["total_units"], field="total_units")

        self._validate_bill_fields(
            bill.bill_type,
            changes.get("period_start", bill.period_start),
            changes.get("period_end", bill.period_end),
            changes.get("total_amount", bill.total_amount),
            changes.get("total_units", bill.total_units),
            changes.get("custom_type", bill.custom_type),
        )

        # Allocations were computed from the old totals
        stale = any(
            field in changes and changes[field] != getattr(bill, field)
            for field in ("total_amount", "total_units")
        )
        audit_changes = {k: str(v) for k, v in changes.items()}
        try:
            for field, value in changes.items():
                setattr(bill, field, value)
            if stale:
                result = self.db.execute(delete(Allocation).where(Allocation.bill_id == bill.id))
                audit_changes["allocations_cleared"] = str(result.rowcount)
            AuditService.log(self.db, "bill", bill.id, "update", actor_id, audit_changes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Updated bill %d: %s", bill.id, ", ".join(sorted(changes)))
        if stale:
            logger.info("Cleared allocations of bill %d after total change", bill.id)
        return bill

    # ------------------------------------------------------------------
    # Consumptions
    # ------------------------------------------------------------------

    def record_consumption(
        self,
        bill_id: int,
        user_id: int,
        units: MoneyInput,
        meter_value: MoneyInput | None = None,
        source: ConsumptionSource = ConsumptionSource.USER,
        recorded_at: datetime | None = None,
    ) -> Consumption:
        """Record a usage reading for a draft bill.

        A later reading for the same user supersedes earlier ones.

        Raises:
            NotFoundError: If the bill or user does not exist
            ValidationError: If units are negative
            InvalidStateError: If the bill is posted
            ImmutableError: If the bill is closed
        """
        bill = self.require_bill(bill_id)
        self._ensure_draft(bill, "record consumption")
        self.directory.require_user(user_id)

        consumed = to_units(units, field="units")
        if consumed < 0:
            raise ValidationError("Consumption units must not be negative", units=units)

        consumption = Consumption(
            bill_id=bill.id,
            user_id=user_id,
            units=consumed,
            meter_value=to_units(meter_value, field="meter_value") if meter_value is not None else None,
            source=ConsumptionSource(source),
            recorded_at=recorded_at or datetime.now(timezone.utc),
        )
        self.db.add(consumption)
        self.db.commit()

        logger.info(
            "Recorded consumption: bill_id=%d, user_id=%d, units=%s, source=%s",
            bill.id,
            user_id,
            consumed,
            consumption.source.value,
        )
        return consumption

    def list_consumptions(self, bill_id: int) -> list[Consumption]:
        """All consumption records of a bill in recording order."""
        stmt = (
            select(Consumption)
            .where(Consumption.bill_id == bill_id)
            .order_by(Consumption.recorded_at.asc(), Consumption.id.asc())
        )
        return list(self.db.scalars(stmt).all())

    def effective_consumptions(self, bill_id: int) -> list[Consumption]:
        """Latest consumption record per user, ordered by user ID."""
        latest: dict[int, Consumption] = {}
        for consumption in self.list_consumptions(bill_id):
            latest[consumption.user_id] = consumption
        return [latest[user_id] for user_id in sorted(latest)]

    # ------------------------------------------------------------------
    # Allocations
    # ------------------------------------------------------------------

    def compute_allocations(
        self,
        bill_id: int,
        subjects: Iterable[AllocationSubject] | None,
        method: AllocationMethod,
        actor_id: int | None = None,
    ) -> list[Allocation]:
        """Compute and store allocations for a draft bill.

        Replaces any earlier allocations of the bill. For PROPORTIONAL without
        explicit subjects the effective consumptions are used. Group subjects
        without a weight get the group's configured weight.

        Raises:
            NotFoundError: If the bill or a subject does not exist
            ValidationError: If the subjects are invalid for the method
            AllocationMismatchError: If override amounts do not sum to the total
            InvalidStateError: If the bill is posted
            ImmutableError: If the bill is closed
        """
        method = AllocationMethod(method)
        if method == AllocationMethod.TEMPLATE:
            raise ValidationError("Template allocations are produced by recurring generation only")

        bill = self.require_bill(bill_id)
        self._ensure_draft(bill, "allocate")

        if subjects is None:
            if method != AllocationMethod.PROPORTIONAL:
                raise ValidationError(f"Subjects are required for {method.value} allocation")
            resolved = [
                AllocationSubject(SubjectType.USER, c.user_id, units=c.units)
                for c in self.effective_consumptions(bill.id)
            ]
        else:
            resolved = [self._resolve_subject(s, method) for s in subjects]

        shares = self.allocation_service.compute_allocations(
            bill.total_amount,
            resolved,
            method,
            total_units=bill.total_units,
        )

        try:
            self.db.execute(delete(Allocation).where(Allocation.bill_id == bill.id))
            allocations = [
                Allocation(
                    bill_id=bill.id,
                    subject_type=share.subject_type,
                    subject_id=share.subject_id,
                    amount=share.amount,
                    units=share.units,
                    method=method,
                )
                for share in shares
            ]
            self.db.add_all(allocations)
            AuditService.log(
                self.db,
                "bill",
                bill.id,
                "allocate",
                actor_id,
                {"method": method.value, "allocations": len(allocations)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Allocated bill %d by %s across %d subjects (total=%s)",
            bill.id,
            method.value,
            len(allocations),
            bill.total_amount,
        )
        return allocations

    def get_allocations(self, bill_id: int) -> list[Allocation]:
        """Allocations of a bill ordered by subject."""
        stmt = (
            select(Allocation)
            .where(Allocation.bill_id == bill_id)
            .order_by(Allocation.subject_type.asc(), Allocation.subject_id.asc())
        )
        return list(self.db.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def post_bill(self, bill_id: int, actor_id: int | None = None) -> Bill:
        """Transition a bill from draft to posted.

        Raises:
            NotFoundError: If the bill does not exist
            InvalidStateError: If the bill is not a draft, has no allocations,
                or another caller posted it first
            AllocationMismatchError: If non-template allocations do not sum to
                the bill total
            ImmutableError: If the bill is closed
        """
        bill = self.require_bill(bill_id)
        self._ensure_status(bill, BillStatus.DRAFT, "post")

        allocation_count, allocated, template_rows = self.db.execute(
            select(
                func.count(Allocation.id),
                func.sum(Allocation.amount),
                func.count(Allocation.id).filter(Allocation.method == AllocationMethod.TEMPLATE),
            ).where(Allocation.bill_id == bill.id)
        ).one()
        if not allocation_count:
            raise InvalidStateError(
                f"Bill {bill_id} has no allocations; allocate before posting",
                bill_id=bill_id,
            )
        # Template shares are rounded independently and may miss the total by cents
        if not template_rows and allocated != bill.total_amount:
            raise AllocationMismatchError(
                f"Bill {bill_id} allocations sum to {allocated}, expected {bill.total_amount}",
                bill_id=bill_id,
                allocated=allocated,
                total_amount=bill.total_amount,
            )

        return self._transition(bill, BillStatus.DRAFT, BillStatus.POSTED, "post", actor_id)

    def close_bill(self, bill_id: int, actor_id: int | None = None) -> Bill:
        """Transition a bill from posted to closed.

        Raises:
            NotFoundError: If the bill does not exist
            InvalidStateError: If the bill is not posted
            ImmutableError: If the bill is already closed
        """
        bill = self.require_bill(bill_id)
        self._ensure_status(bill, BillStatus.POSTED, "close")
        return self._transition(bill, BillStatus.POSTED, BillStatus.CLOSED, "close", actor_id)

    def _transition(
        self,
        bill: Bill,
        expected: BillStatus,
        target: BillStatus,
        action: str,
        actor_id: int | None,
    ) -> Bill:
        bill_id = bill.id
        result = self.db.execute(
            update(Bill)
            .where(Bill.id == bill_id, Bill.status == expected)
            .values(status=target, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.require_bill(bill_id)
            self.db.refresh(current)
            logger.warning(
                "Lost %s race for bill %d: status is %s", action, bill_id, current.status.value
            )
            self._ensure_status(current, expected, action)
            raise InvalidStateError(
                f"Bill {bill_id} changed concurrently; cannot {action}",
                bill_id=bill_id,
                status=current.status.value,
            )

        AuditService.log(self.db, "bill", bill_id, action, actor_id, {"status": target.value})
        self.db.commit()
        self.db.refresh(bill)

        logger.info("Bill %d %s: %s -> %s", bill_id, action, expected.value, target.value)
        return bill

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_subject(self, subject: AllocationSubject, method: AllocationMethod) -> AllocationSubject:
        subject_type = SubjectType(subject.subject_type)
        self.directory.require_subject(subject_type, subject.subject_id)

        weight = to_units(subject.weight, field="weight") if subject.weight is not None else None
        if method == AllocationMethod.WEIGHT and weight is None and subject_type == SubjectType.GROUP:
            weight = self.directory.group_weight(subject.subject_id)

        return AllocationSubject(
            subject_type=subject_type,
            subject_id=subject.subject_id,
            units=to_units(subject.units, field="units") if subject.units is not None else None,
            weight=weight,
            amount=to_money(subject.amount) if subject.amount is not None else None,
        )

    @staticmethod
    def _ensure_draft(bill: Bill, operation: str) -> None:
        BillService._ensure_status(bill, BillStatus.DRAFT, operation)

    @staticmethod
    def _ensure_status(bill: Bill, expected: BillStatus, operation: str) -> None:
        if bill.status == expected:
            return
        if bill.status == BillStatus.CLOSED:
            raise ImmutableError(
                f"Bill {bill.id} is closed; cannot {operation}",
                bill_id=bill.id,
                status=bill.status.value,
            )
        raise InvalidStateError(
            f"Bill {bill.id} is {bill.status.value}, expected {expected.value}; cannot {operation}",
            bill_id=bill.id,
            status=bill.status.value,
        )

    @staticmethod
    def _validate_bill_fields(
        bill_type: BillType,
        period_start: date,
        period_end: date,
        total_amount: Decimal,
        total_units: Decimal | None,
        custom_type: str | None,
    ) -> None:
        if period_start > period_end:
            raise ValidationError(
                f"Period start {period_start} is after period end {period_end}",
                period_start=period_start,
                period_end=period_end,
            )
        if total_amount < 0:
            raise ValidationError("Bill total must not be negative", total_amount=total_amount)
        if total_units is not None and total_units < 0:
            raise ValidationError("Bill total units must not be negative", total_units=total_units)
        if bill_type == BillType.OTHER and not custom_type:
            raise ValidationError("Bills of type 'other' need a custom type")


__all__ = ["BillService"]
