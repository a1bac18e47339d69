"""Money and quantity helpers.

All monetary amounts are ``Decimal`` values quantized to the currency minor
unit (0.01). Consumption units and weights use three decimals. Binary floats
are rejected on the way in; ``to_float`` exists only for the forecasting
boundary.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from expense_engine.errors import ValidationError

MINOR_UNIT = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100
UNIT_QUANTUM = Decimal("0.001")
ZERO = Decimal("0.00")

MoneyInput = Union[Decimal, int, str]


def to_decimal(value: MoneyInput, field: str) -> Decimal:
    """Parse caller input as a finite Decimal; floats and bools are rejected."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int or str, not {type(value).__name__}",
            field=field,
            value=value,
        )
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"{field} is not a valid number: {value!r}", field=field, value=value) from e
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field, value=value)
    return result


def to_money(value: MoneyInput, field: str = "amount") -> Decimal:
    """Convert caller input to a money amount.

    Raises:
        ValidationError: if the value is a float, not a number, or carries
            more precision than the minor unit
    """
    amount = to_decimal(value, field)
    quantized = amount.quantize(MINOR_UNIT)
    if quantized != amount:
        raise ValidationError(
            f"{field} has more precision than the currency minor unit: {value}",
            field=field,
            value=value,
        )
    return quantized


def to_units(value: MoneyInput, field: str = "units") -> Decimal:
    """Convert caller input to a quantity (units, weights) with three decimals."""
    return to_decimal(value, field).quantize(UNIT_QUANTUM, rounding=ROUND_HALF_UP)


def round_money(value: Decimal) -> Decimal:
    """Round a computed value to the minor unit, half away from zero."""
    return Decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def floor_money(value: Decimal) -> Decimal:
    """Round a computed value down to the minor unit."""
    return Decimal(value).quantize(MINOR_UNIT, rounding=ROUND_FLOOR)


def to_minor_units(amount: Decimal) -> int:
    """Amount as an integer count of minor units (cents)."""
    return int(round_money(amount) * MINOR_UNITS_PER_MAJOR)


def from_minor_units(minor: int) -> Decimal:
    """Integer minor units back to a money amount."""
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(MINOR_UNIT)


def to_float(amount: Decimal) -> float:
    """One-way conversion for the forecasting collaborator."""
    return float(amount)


def from_float(value: float) -> Decimal:
    """Convert a float returned by the forecasting collaborator to money."""
    return round_money(Decimal(repr(value)))


__all__ = [
    "MINOR_UNIT",
    "UNIT_QUANTUM",
    "ZERO",
    "MoneyInput",
    "to_decimal",
    "to_money",
    "to_units",
    "round_money",
    "floor_money",
    "to_minor_units",
    "from_minor_units",
    "to_float",
    "from_float",
]
