"""Column types for exact fixed-point storage."""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator


class FixedPoint(TypeDecorator):
    """Decimal stored as a scaled integer.

    ``FixedPoint(2)`` stores money as integer minor units, ``FixedPoint(3)``
    stores quantities in thousandths. Values read back are ``Decimal``
    quantized to the column scale, on every backend including SQLite.
    """

    impl = BigInteger
    cache_ok = True

    def __init__(self, scale: int = 2):
        super().__init__()
        self.scale = scale
        self.quantum = Decimal(1).scaleb(-scale)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        scaled = Decimal(value).scaleb(self.scale)
        return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-self.scale).quantize(self.quantum)


Money = FixedPoint(2)
"""Money column: integer minor units."""

Quantity = FixedPoint(3)
"""Units / weights column: integer thousandths."""

Percentage = FixedPoint(4)
"""Percentage column with four decimals (33.3333)."""

__all__ = ["FixedPoint", "Money", "Quantity", "Percentage"]
