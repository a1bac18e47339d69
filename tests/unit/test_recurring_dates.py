"""Unit tests for recurring due-date and period arithmetic."""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from expense_engine.models.recurring_bill_template import Frequency, TemplateAllocationType
from expense_engine.services.recurring_bill_service import (
    add_months,
    calculate_next_due_date,
    calculate_period,
    resolve_template_amount,
)


class TestAddMonths:
    """Test month arithmetic with clamping."""

    @pytest.mark.parametrize(
        "start,months,day,expected",
        [
            (date(2024, 1, 31), 1, None, date(2024, 2, 29)),
            (date(2023, 1, 31), 1, None, date(2023, 2, 28)),
            (date(2024, 3, 31), -1, None, date(2024, 2, 29)),
            (date(2024, 11, 15), 3, None, date(2025, 2, 15)),
            (date(2024, 4, 30), 1, 31, date(2024, 5, 31)),
            (date(2024, 1, 10), -13, None, date(2022, 12, 10)),
        ],
    )
    def test_add_months(self, start, months, day, expected):
        assert add_months(start, months, day) == expected


class TestNextDueDate:
    """Test advancing a due date by one frequency unit."""

    def test_monthly_day_31_clamps_then_repins(self):
        """Mar 31 -> Apr 30 -> May 31: the configured day is restored."""
        april = calculate_next_due_date(date(2024, 3, 31), 31, Frequency.MONTHLY)
        may = calculate_next_due_date(april, 31, Frequency.MONTHLY)

        assert april == date(2024, 4, 30)
        assert may == date(2024, 5, 31)

    def test_quarterly(self):
        assert calculate_next_due_date(date(2024, 1, 15), 15, Frequency.QUARTERLY) == date(2024, 4, 15)

    def test_yearly_leap_day(self):
        assert calculate_next_due_date(date(2024, 2, 29), 29, Frequency.YEARLY) == date(2025, 2, 28)


class TestCalculatePeriod:
    """Test billing period computation."""

    def test_monthly(self):
        assert calculate_period(date(2024, 4, 30), Frequency.MONTHLY) == (date(2024, 3, 30), date(2024, 4, 30))

    def test_quarterly(self):
        assert calculate_period(date(2024, 5, 31), Frequency.QUARTERLY) == (date(2024, 2, 29), date(2024, 5, 31))

    def test_yearly(self):
        assert calculate_period(date(2025, 1, 1), Frequency.YEARLY) == (date(2024, 1, 1), date(2025, 1, 1))


class TestResolveTemplateAmount:
    """Test per-share amount resolution."""

    def share(self, allocation_type, **kwargs):
        return SimpleNamespace(allocation_type=allocation_type, **kwargs)

    def test_fixed_copies_amount(self):
        share = self.share(TemplateAllocationType.FIXED, fixed_amount=Decimal("12.34"))
        assert resolve_template_amount(Decimal("100.00"), share) == Decimal("12.34")

    def test_percentage_rounds_half_up(self):
        share = self.share(TemplateAllocationType.PERCENTAGE, percentage=Decimal("33.335"))
        assert resolve_template_amount(Decimal("100.00"), share) == Decimal("33.34")

    def test_fraction(self):
        share = self.share(TemplateAllocationType.FRACTION, fraction_num=1, fraction_denom=3)
        assert resolve_template_amount(Decimal("100.00"), share) == Decimal("33.33")
