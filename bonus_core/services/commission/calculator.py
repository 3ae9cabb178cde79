from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_commission(amount, percentage) -> Decimal:
    """amount * percentage / 100, rounded half-up to cents.

    Zero for a missing or non-positive amount and for a percentage outside 0..100.
    """
    if amount is None or percentage is None:
        return ZERO
    try:
        amount = Decimal(str(amount))
        percentage = Decimal(str(percentage))
    except InvalidOperation:
        return ZERO
    if not amount.is_finite() or not percentage.is_finite():
        return ZERO
    if amount <= 0 or percentage < 0 or percentage > HUNDRED:
        return ZERO
    return to_money(amount * percentage / HUNDRED)
