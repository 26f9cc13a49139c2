"""
Money normalization helpers.

All monetary values in the engine are Decimal. Floats are routed through
str() so 0.1 becomes Decimal("0.1") rather than its binary expansion.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Numeric = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Numeric) -> Decimal:
    """Convert a numeric input to Decimal without rounding.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a valid amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    return result


def round_money(value: Numeric) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Numeric) -> str:
    """Format an amount for display, e.g. $1,020.00."""
    value = round_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"
