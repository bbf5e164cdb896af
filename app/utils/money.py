"""Money helpers: every amount is a Decimal with two fractional digits."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Union[Decimal, int, float, str, None]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value, not their binary one
    return Decimal(str(value))


def round_money(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Round half up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
