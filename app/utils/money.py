"""
Money helpers shared by the ledger.

Usage:
    from app.utils.money import to_money

    to_money("300")  -> Decimal("300.00")
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING

CENT = Decimal("0.01")


def to_money(amount) -> Decimal:
    """
    Convert to a Decimal rounded to cents.

    Args:
        amount: int / str / Decimal (float goes through str to avoid binary noise)

    Returns:
        Decimal with exactly two decimal places
    """
    if isinstance(amount, float):
        amount = str(amount)
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def ceil_cents(amount: Decimal) -> Decimal:
    """Round up to the next cent (savings plan amounts never undershoot)."""
    return amount.quantize(CENT, rounding=ROUND_CEILING)

