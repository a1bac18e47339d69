"""Recurring bill templates and idempotent generation of due bills.

Generation for one template (bill + allocations + next_due_date advance)
is a single transaction. The advance is a compare-and-set on the old due
date, so two overlapping scheduler runs produce one bill per due date.

Day-of-month policy: when the configured day does not exist in the target
month the date is clamped to that month's last day. Every advance pins the
day again from the configured value, so a template for the 31st is due on
Apr 30 and then on May 31.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, NamedTuple, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from expense_engine.errors import (
    AllocationMismatchError,
    EngineError,
    NotFoundError,
    ValidationError,
)
from expense_engine.models.allocation import Allocation, AllocationMethod, SubjectType
from expense_engine.models.bill import Bill, BillStatus, BillType
from expense_engine.models.recurring_bill_template import (
    Frequency,
    RecurringBillTemplate,
    TemplateAllocation,
    TemplateAllocationType,
)
from expense_engine.money import ZERO, MoneyInput, round_money, to_decimal, to_money
from expense_engine.services.audit_service import AuditService
from expense_engine.services.user_service import UserDirectory

logger = logging.getLogger(__name__)

SHARE_TOLERANCE = Decimal("0.001")
"""Non-fixed shares must sum to 1 within this tolerance (0.1%)."""

PERCENTAGE_STEP = Decimal("0.0001")
"""Precision of stored percentages."""

UPDATABLE_TEMPLATE_FIELDS = {
    "custom_type",
    "frequency",
    "day_of_month",
    "amount",
    "notes",
    "allocations",
    "next_due_date",
}


class TemplateAllocationSpec(NamedTuple):
    """Caller input for one share of a template."""

    subject_type: SubjectType
    subject_id: int
    allocation_type: TemplateAllocationType
    fixed_amount: Optional[MoneyInput] = None
    percentage: Optional[MoneyInput] = None
    fraction_num: Optional[int] = None
    fraction_denom: Optional[int] = None


@dataclass
class GenerationReport:
    """Outcome of one generation sweep."""

    generated: list[Bill] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    """Templates already advanced by a concurrent run."""

    failed: dict[int, str] = field(default_factory=dict)
    """Template ID -> error message; those templates keep their due date."""

    @property
    def success(self) -> bool:
        return not self.failed


def add_months(value: date, months: int, day: int | None = None) -> date:
    """Shift a date by whole months, clamping the day to the month length.

    Args:
        value: Starting date
        months: Months to add (negative to go back)
        day: Day of month to pin to (default: the day of ``value``)
    """
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day if day is not None else value.day, last_day))


def calculate_next_due_date(from_date: date, day_of_month: int, frequency: Frequency) -> date:
    """Advance one frequency unit, then pin to the configured day of month."""
    return add_months(from_date, Frequency(frequency).months, day_of_month)


def calculate_period(due_date: date, frequency: Frequency) -> tuple[date, date]:
    """Billing period ending on the due date and starting one unit earlier."""
    return add_months(due_date, -Frequency(frequency).months), due_date


def resolve_template_amount(total_amount: Decimal, allocation: TemplateAllocation) -> Decimal:
    """Amount of one template share for a bill of ``total_amount``.

    Percentage and fraction shares are rounded independently, so the
    resolved amounts of a template may differ from the total by a few cents.
    """
    if allocation.allocation_type == TemplateAllocationType.FIXED:
        return allocation.fixed_amount
    if allocation.allocation_type == TemplateAllocationType.PERCENTAGE:
        return round_money(total_amount * allocation.percentage / Decimal(100))
    return round_money(
        total_amount * Decimal(allocation.fraction_num) / Decimal(allocation.fraction_denom)
    )


class RecurringBillService:
    """Service for recurring bill templates and bill generation."""

    def __init__(self, db: Session, directory: Optional[UserDirectory] = None):
        """Initialize with database session."""
        self.db = db
        self.directory = directory or UserDirectory(db)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def create_template(
        self,
        custom_type: str,
        frequency: Frequency,
        day_of_month: int,
        amount: MoneyInput,
        allocations: Iterable[TemplateAllocationSpec],
        notes: str | None = None,
        next_due_date: date | None = None,
        today: date | None = None,
        actor_id: int | None = None,
    ) -> RecurringBillTemplate:
        """Create an active template.

        Unless given, the first due date is today advanced by one frequency
        unit and pinned to ``day_of_month``.

        Raises:
            ValidationError: If a field or share is invalid
            AllocationMismatchError: If non-fixed shares do not sum to 100%
            NotFoundError: If a subject does not exist
        """
        frequency = Frequency(frequency)
        total = to_money(amount)
        self._validate_template_fields(custom_type, day_of_month, total)
        rows = self.build_allocations(allocations)

        if next_due_date is None:
            next_due_date = calculate_next_due_date(
                today or datetime.now(timezone.utc).date(), day_of_month, frequency
            )

        template = RecurringBillTemplate(
            custom_type=custom_type,
            frequency=frequency,
            day_of_month=day_of_month,
            amount=total,
            notes=notes,
            next_due_date=next_due_date,
            is_active=True,
            allocations=rows,
        )
        self.db.add(template)
        self.db.flush()
        AuditService.log(
            self.db,
            "template",
            template.id,
            "create",
            actor_id,
            {"next_due_date": next_due_date.isoformat(), "allocations": len(rows)},
        )
        self.db.commit()

        logger.info(
            "Created recurring template: id=%d, custom_type=%s, frequency=%s, day=%d, next_due=%s",
            template.id,
            custom_type,
            frequency.value,
            day_of_month,
            next_due_date,
        )
        return template

    def get_template(self, template_id: int) -> Optional[RecurringBillTemplate]:
        """Get template by ID, None if absent."""
        return self.db.get(RecurringBillTemplate, template_id)

    def require_template(self, template_id: int) -> RecurringBillTemplate:
        """Get template by ID.

        Raises:
            NotFoundError: If the template does not exist
        """
        template = self.get_template(template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found", template_id=template_id)
        return template

    def list_templates(self, active_only: bool = False) -> list[RecurringBillTemplate]:
        """List templates ordered by next due date."""
        stmt = select(RecurringBillTemplate).order_by(
            RecurringBillTemplate.next_due_date.asc(), RecurringBillTemplate.id.asc()
        )
        if active_only:
            stmt = stmt.where(RecurringBillTemplate.is_active == True)  # noqa: E712
        return list(self.db.scalars(stmt).all())

    def update_template(
        self,
        template_id: int,
        actor_id: int | None = None,
        **changes,
    ) -> RecurringBillTemplate:
        """Update template fields; shares are revalidated when replaced.

        Raises:
            NotFoundError: If the template or a subject does not exist
            ValidationError: If a field or share is invalid
            AllocationMismatchError: If non-fixed shares do not sum to 100%
        """
        unknown = set(changes) - UPDATABLE_TEMPLATE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update template fields: {', '.join(sorted(unknown))}")

        template = self.require_template(template_id)

        if "frequency" in changes:
            changes["frequency"] = Frequency(changes["frequency"])
        if "amount" in changes:
            changes["amount"] = to_money(changes["amount"])
        self._validate_template_fields(
            changes.get("custom_type", template.custom_type),
            changes.get("day_of_month", template.day_of_month),
            changes.get("amount", template.amount),
        )

        new_rows = None
        if "allocations" in changes:
            new_rows = self.build_allocations(changes.pop("allocations"))

        for name, value in changes.items():
            setattr(template, name, value)
        if new_rows is not None:
            template.allocations = new_rows

        audit_changes = {k: str(v) for k, v in changes.items()}
        if new_rows is not None:
            audit_changes["allocations"] = str(len(new_rows))
        AuditService.log(self.db, "template", template.id, "update", actor_id, audit_changes)
        self.db.commit()

        logger.info("Updated template %d: %s", template.id, ", ".join(sorted(audit_changes)))
        return template

    def deactivate_template(self, template_id: int, actor_id: int | None = None) -> RecurringBillTemplate:
        """Soft-delete a template; bills it generated keep their back-reference.

        Raises:
            NotFoundError: If the template does not exist
        """
        template = self.require_template(template_id)
        template.is_active = False
        AuditService.log(self.db, "template", template.id, "deactivate", actor_id)
        self.db.commit()

        logger.info("Deactivated template %d", template.id)
        return template

    def build_allocations(self, specs: Iterable[TemplateAllocationSpec]) -> list[TemplateAllocation]:
        """Validate shares and turn them into TemplateAllocation rows.

        Raises:
            ValidationError: If a share is malformed or duplicated
            AllocationMismatchError: If non-fixed shares do not sum to 100%
            NotFoundError: If a subject does not exist
        """
        specs = list(specs)
        if not specs:
            raise ValidationError("At least one allocation is required")

        rows: list[TemplateAllocation] = []
        seen: set[tuple[SubjectType, int]] = set()
        total_share = Decimal(0)
        has_non_fixed = False

        for index, spec in enumerate(specs, start=1):
            subject_type = SubjectType(spec.subject_type)
            key = (subject_type, spec.subject_id)
            if key in seen:
                raise ValidationError(
                    f"allocation {index}: duplicate subject {subject_type.value} {spec.subject_id}",
                    index=index,
                )
            seen.add(key)
            self.directory.require_subject(subject_type, spec.subject_id)

            row = TemplateAllocation(
                position=index,
                subject_type=subject_type,
                subject_id=spec.subject_id,
                allocation_type=self._allocation_type(spec, index),
            )

            if row.allocation_type == TemplateAllocationType.FIXED:
                if spec.fixed_amount is None:
                    raise ValidationError(
                        f"allocation {index}: fixed amount is required for fixed type", index=index
                    )
                row.fixed_amount = to_money(spec.fixed_amount, field="fixed_amount")
                if row.fixed_amount < 0:
                    raise ValidationError(
                        f"allocation {index}: fixed amount must not be negative",
                        index=index,
                        value=spec.fixed_amount,
                    )
            elif row.allocation_type == TemplateAllocationType.PERCENTAGE:
                if spec.percentage is None:
                    raise ValidationError(
                        f"allocation {index}: percentage is required for percentage type",
                        index=index,
                    )
                percentage = to_decimal(spec.percentage, field="percentage")
                if percentage <= 0 or percentage > 100:
                    raise ValidationError(
                        f"allocation {index}: percentage must be between 0 and 100",
                        index=index,
                        value=percentage,
                    )
                if percentage != percentage.quantize(PERCENTAGE_STEP):
                    raise ValidationError(
                        f"allocation {index}: percentage allows at most 4 decimal places",
                        index=index,
                        value=percentage,
                    )
                row.percentage = percentage
                total_share += percentage / Decimal(100)
                has_non_fixed = True
            else:
                if spec.fraction_num is None or spec.fraction_denom is None:
                    raise ValidationError(
                        f"allocation {index}: fraction numerator and denominator are required "
                        "for fraction type",
                        index=index,
                    )
                if spec.fraction_num <= 0 or spec.fraction_denom <= 0:
                    raise ValidationError(
                        f"allocation {index}: fraction values must be positive", index=index
                    )
                if spec.fraction_num > spec.fraction_denom:
                    raise ValidationError(
                        f"allocation {index}: fraction numerator cannot be greater than denominator",
                        index=index,
                    )
                row.fraction_num = spec.fraction_num
                row.fraction_denom = spec.fraction_denom
                total_share += Decimal(spec.fraction_num) / Decimal(spec.fraction_denom)
                has_non_fixed = True

            rows.append(row)

        if has_non_fixed and abs(total_share - 1) > SHARE_TOLERANCE:
            raise AllocationMismatchError(
                f"allocations must sum to 100% (currently {total_share * 100:.2f}%)",
                total_percentage=(total_share * 100).quantize(Decimal("0.01")),
            )

        return rows

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_due_bills(self, now: datetime | date) -> list[Bill]:
        """Generate one bill for every active template due at ``now``.

        Templates whose generation fails keep their due date and are retried
        by the next run; see generate_due_bills_report for the failures.
        """
        return self.generate_due_bills_report(now).generated

    def generate_due_bills_report(self, now: datetime | date) -> GenerationReport:
        """Generate due bills and report generated, skipped and failed templates."""
        today = now.date() if isinstance(now, datetime) else now
        stmt = (
            select(RecurringBillTemplate)
            .where(
                RecurringBillTemplate.is_active == True,  # noqa: E712
                RecurringBillTemplate.next_due_date <= today,
            )
            .order_by(RecurringBillTemplate.next_due_date.asc(), RecurringBillTemplate.id.asc())
        )
        templates = [(t, t.next_due_date) for t in self.db.scalars(stmt).all()]
        logger.info("Found %d recurring templates due on or before %s", len(templates), today)

        report = GenerationReport()
        for template, due_date in templates:
            template_id = template.id
            try:
                bill = self.generate_bill_from_template(template, now, due_date)
            except (EngineError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(
                    "Error generating bill from template %d: %s", template_id, e, exc_info=True
                )
                report.failed[template_id] = str(e)
                continue

            if bill is None:
                report.skipped.append(template_id)
            else:
                report.generated.append(bill)

        logger.info(
            "Recurring generation finished: generated=%d, skipped=%d, failed=%d",
            len(report.generated),
            len(report.skipped),
            len(report.failed),
        )
        return report

    def generate_bill_from_template(
        self,
        template: RecurringBillTemplate,
        now: datetime | date,
        due_date: date | None = None,
    ) -> Optional[Bill]:
        """Generate the bill for the template's due date.

        ``due_date`` is the due date the caller selected the template by and
        defaults to the template's current one.

        Bill, allocations and the due-date advance commit together. Returns
        None (and writes nothing) when a concurrent run already advanced the
        template past the due date this caller saw.
        """
        due_date = due_date or template.next_due_date
        period_start, period_end = calculate_period(due_date, template.frequency)
        generated_at = now if isinstance(now, datetime) else datetime.now(timezone.utc)

        try:
            bill = Bill(
                bill_type=BillType.OTHER,
                custom_type=template.custom_type,
                period_start=period_start,
                period_end=period_end,
                payment_deadline=due_date,
                total_amount=template.amount,
                notes=template.notes,
                status=BillStatus.DRAFT,
                recurring_template_id=template.id,
            )
            self.db.add(bill)
            self.db.flush()

            allocations = self.build_bill_allocations(bill, template)
            self.db.add_all(allocations)

            next_due_date = calculate_next_due_date(due_date, template.day_of_month, template.frequency)
            result = self.db.execute(
                update(RecurringBillTemplate)
                .where(
                    RecurringBillTemplate.id == template.id,
                    RecurringBillTemplate.next_due_date == due_date,
                    RecurringBillTemplate.is_active == True,  # noqa: E712
                )
                .values(
                    next_due_date=next_due_date,
                    last_generated_at=generated_at,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                template_id = template.id
                self.db.rollback()
                logger.info(
                    "Template %d already advanced past %s by another run; skipping",
                    template_id,
                    due_date,
                )
                return None

            AuditService.log(
                self.db,
                "template",
                template.id,
                "generate",
                None,
                {"bill_id": bill.id, "due_date": due_date.isoformat(), "next_due_date": next_due_date.isoformat()},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(template)
        logger.info(
            "Generated bill %d from template %d for %s..%s (next due %s)",
            bill.id,
            template.id,
            period_start,
            period_end,
            next_due_date,
        )
        return bill

    def build_bill_allocations(self, bill: Bill, template: RecurringBillTemplate) -> list[Allocation]:
        """Resolve the template shares into allocations of ``bill``."""
        return [
            Allocation(
                bill_id=bill.id,
                subject_type=share.subject_type,
                subject_id=share.subject_id,
                amount=resolve_template_amount(template.amount, share),
                units=ZERO,
                method=AllocationMethod.TEMPLATE,
            )
            for share in template.allocations
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _allocation_type(spec: TemplateAllocationSpec, index: int) -> TemplateAllocationType:
        try:
            return TemplateAllocationType(spec.allocation_type)
        except ValueError as e:
            raise ValidationError(
                f"allocation {index}: invalid allocation type '{spec.allocation_type}'",
                index=index,
            ) from e

    @staticmethod
    def _validate_template_fields(custom_type: str, day_of_month: int, amount: Decimal) -> None:
        if not custom_type:
            raise ValidationError("Template needs a custom type (bill name)")
        if not 1 <= day_of_month <= 31:
            raise ValidationError(
                f"Day of month must be between 1 and 31, got {day_of_month}",
                day_of_month=day_of_month,
            )
        if amount < 0:
            raise ValidationError("Template amount must not be negative", amount=amount)


__all__ = [
    "RecurringBillService",
    "TemplateAllocationSpec",
    "GenerationReport",
    "add_months",
    "calculate_next_due_date",
    "calculate_period",
    "resolve_template_amount",
]
