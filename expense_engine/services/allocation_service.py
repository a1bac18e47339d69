"""Allocation service for distributing a bill total across subjects.

Supports allocation methods:
- EQUAL: Same share for every subject
- PROPORTIONAL: Distribute by consumed units
- WEIGHT: Distribute by subject weight (missing weight = 1)
- OVERRIDE: Exact amounts supplied by the caller

Every method returns amounts that sum exactly to the total. Shares are
rounded down to the minor unit and the leftover cents are handed out one at
a time in ascending (subject_type, subject_id) order.
"""

from decimal import ROUND_FLOOR, Decimal
from typing import Dict, Iterable, NamedTuple, Optional, Tuple

from expense_engine.errors import AllocationMismatchError, ValidationError
from expense_engine.models.allocation import AllocationMethod, SubjectType
from expense_engine.money import ZERO, from_minor_units, to_minor_units

DEFAULT_WEIGHT = Decimal("1")

SubjectKey = Tuple[SubjectType, int]


class AllocationSubject(NamedTuple):
    """Input for one subject of an allocation."""

    subject_type: SubjectType
    subject_id: int
    units: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    amount: Optional[Decimal] = None

    @property
    def key(self) -> SubjectKey:
        return (self.subject_type, self.subject_id)


class AllocationShare(NamedTuple):
    """Computed share for one subject."""

    subject_type: SubjectType
    subject_id: int
    amount: Decimal
    units: Decimal


class AllocationService:
    """Bill allocation engine with multiple methods."""

    def distribute_with_remainder(
        self,
        total_amount: Decimal,
        shares: Dict[SubjectKey, Decimal],
    ) -> Dict[SubjectKey, Decimal]:
        """Distribute amount by shares so that sum(result) == total_amount.

        Algorithm:
        1. Work in integer minor units
        2. Allocate floor(total * share / sum(shares)) to every subject
        3. Hand the leftover minor units, one each, to subjects with a
           positive share in ascending key order

        Args:
            total_amount: Total to distribute
            shares: Dict mapping subject key to share weight

        Returns:
            Dict mapping subject key to allocated amount

        Raises:
            ValidationError: If the shares sum to zero
        """
        total_shares = sum(shares.values(), Decimal(0))
        if total_shares <= 0:
            raise ValidationError(
                "Cannot distribute by shares that sum to zero",
                total_shares=total_shares,
            )

        total_minor = Decimal(to_minor_units(total_amount))
        allocated: Dict[SubjectKey, int] = {}
        for key, share in shares.items():
            exact = total_minor * share / total_shares
            allocated[key] = int(exact.to_integral_value(rounding=ROUND_FLOOR))

        remainder = int(total_minor) - sum(allocated.values())
        recipients = [key for key in sorted(shares) if shares[key] > 0]
        for key in recipients[:remainder]:
            allocated[key] += 1

        return {key: from_minor_units(minor) for key, minor in allocated.items()}

    def allocate_equal(
        self,
        total_amount: Decimal,
        subjects: list[AllocationSubject],
    ) -> list[AllocationShare]:
        """Split the total equally; the first subjects absorb leftover cents."""
        amounts = self.distribute_with_remainder(
            total_amount, {s.key: DEFAULT_WEIGHT for s in subjects}
        )
        return self._shares(subjects, amounts, lambda s: s.units if s.units is not None else ZERO)

    def allocate_proportional(
        self,
        total_amount: Decimal,
        subjects: list[AllocationSubject],
        total_units: Optional[Decimal] = None,
    ) -> list[AllocationShare]:
        """Allocate by consumed units.

        The denominator is the sum of the subjects' units, so the shares always
        add up to the total. When the bill's metered total is given it must be
        positive and at least the subjects' combined consumption; any
        difference (losses, common areas) is spread proportionally.

        Raises:
            ValidationError: If units are missing, zero in total, or exceed
                the bill's metered total
        """
        for subject in subjects:
            if subject.units is None:
                raise ValidationError(
                    f"Units required for proportional allocation of {subject.subject_type.value} "
                    f"{subject.subject_id}",
                    subject_id=subject.subject_id,
                )

        consumed = sum((s.units for s in subjects), Decimal(0))
        if total_units is not None:
            if total_units <= 0:
                raise ValidationError("Bill total units must be positive", total_units=total_units)
            if consumed > total_units:
                raise ValidationError(
                    f"Recorded consumption {consumed} exceeds bill total units {total_units}",
                    consumed=consumed,
                    total_units=total_units,
                )
        if consumed == 0:
            raise ValidationError("Total units are zero; nothing to allocate by", total_units=consumed)

        amounts = self.distribute_with_remainder(total_amount, {s.key: s.units for s in subjects})
        return self._shares(subjects, amounts, lambda s: s.units)

    def allocate_weight(
        self,
        total_amount: Decimal,
        subjects: list[AllocationSubject],
    ) -> list[AllocationShare]:
        """Allocate by weight; subjects without a weight count as 1."""

        def weight_of(subject: AllocationSubject) -> Decimal:
            return subject.weight if subject.weight is not None else DEFAULT_WEIGHT

        amounts = self.distribute_with_remainder(
            total_amount, {s.key: weight_of(s) for s in subjects}
        )
        return self._shares(subjects, amounts, weight_of)

    def allocate_override(
        self,
        total_amount: Decimal,
        subjects: list[AllocationSubject],
    ) -> list[AllocationShare]:
        """Use caller-supplied amounts after checking they sum to the total.

        Raises:
            ValidationError: If a subject has no amount
            AllocationMismatchError: If the amounts do not sum to the total
        """
        for subject in subjects:
            if subject.amount is None:
                raise ValidationError(
                    f"Amount required for override allocation of {subject.subject_type.value} "
                    f"{subject.subject_id}",
                    subject_id=subject.subject_id,
                )

        allocated = sum((s.amount for s in subjects), Decimal(0))
        if allocated != total_amount:
            raise AllocationMismatchError(
                f"Override amounts sum to {allocated}, bill total is {total_amount}",
                allocated=allocated,
                total_amount=total_amount,
            )

        amounts = {s.key: s.amount for s in subjects}
        return self._shares(subjects, amounts, lambda s: s.units if s.units is not None else ZERO)

    def compute_allocations(
        self,
        total_amount: Decimal,
        subjects: Iterable[AllocationSubject],
        method: AllocationMethod,
        total_units: Optional[Decimal] = None,
    ) -> list[AllocationShare]:
        """Allocate a bill total using the specified method.

        Args:
            total_amount: Bill total (non-negative)
            subjects: Subjects to allocate to
            method: Allocation method
            total_units: Bill's metered total, for PROPORTIONAL

        Returns:
            One share per subject, ordered by (subject_type, subject_id)

        Raises:
            ValidationError: If input is invalid or method unsupported
            AllocationMismatchError: If override amounts do not sum to the total
        """
        subject_list = list(subjects)
        self._validate(total_amount, subject_list)

        if method == AllocationMethod.EQUAL:
            return self.allocate_equal(total_amount, subject_list)
        elif method == AllocationMethod.PROPORTIONAL:
            return self.allocate_proportional(total_amount, subject_list, total_units)
        elif method == AllocationMethod.WEIGHT:
            return self.allocate_weight(total_amount, subject_list)
        elif method == AllocationMethod.OVERRIDE:
            return self.allocate_override(total_amount, subject_list)
        else:
            raise ValidationError(f"Unsupported allocation method: {method}", method=method)

    def _validate(self, total_amount: Decimal, subjects: list[AllocationSubject]) -> None:
        if total_amount < 0:
            raise ValidationError("Bill total must not be negative", total_amount=total_amount)
        if not subjects:
            raise ValidationError("At least one subject is required")

        seen: set[SubjectKey] = set()
        for subject in subjects:
            if subject.key in seen:
                raise ValidationError(
                    f"Duplicate subject {subject.subject_type.value} {subject.subject_id}",
                    subject_id=subject.subject_id,
                )
            seen.add(subject.key)
            for field in ("units", "weight", "amount"):
                value = getattr(subject, field)
                if value is not None and value < 0:
                    raise ValidationError(
                        f"{field} must not be negative for {subject.subject_type.value} "
                        f"{subject.subject_id}",
                        subject_id=subject.subject_id,
                        value=value,
                    )

    @staticmethod
    def _shares(subjects, amounts, units_of) -> list[AllocationShare]:
        ordered = sorted(subjects, key=lambda s: s.key)
        return [
            AllocationShare(
                subject_type=s.subject_type,
                subject_id=s.subject_id,
                amount=amounts[s.key],
                units=units_of(s),
            )
            for s in ordered
        ]


__all__ = ["AllocationService", "AllocationSubject", "AllocationShare", "DEFAULT_WEIGHT"]
