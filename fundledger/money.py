"""
Decimal helpers for money and percentages.

Every amount the ledger computes goes through these functions, so rounding
happens in one place: two decimal places, half up.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

TWOPLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Return `percentage` percent of `amount`, rounded to cents."""
    return quantize_money(amount * percentage / HUNDRED)


def share_percentage(part: Decimal, total: Decimal) -> Decimal:
    """Return what percentage `part` is of `total` (0 when total is 0)."""
    if total == ZERO:
        return ZERO
    return quantize_money(part / total * HUNDRED)


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


def decimal_places(value: Decimal) -> int:
    """Number of digits after the decimal point of a finite Decimal."""
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0
