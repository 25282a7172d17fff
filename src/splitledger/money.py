"""Decimal money helpers shared by the ledger, split policies and settlement engine."""

from decimal import ROUND_HALF_UP, Decimal

Money = Decimal

# Zero band for pairwise records and net balances. The ledger and the
# settlement engine must agree on this value.
BALANCE_EPSILON = Decimal("0.001")

# Allowed drift when validating that split shares add up to the expense total.
SPLIT_TOLERANCE = Decimal("0.01")

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a numeric value to Decimal money.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.

    Args:
        value: Amount as Decimal, int, float or numeric string

    Returns:
        Amount as Decimal
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def is_zero(amount: Decimal, tolerance: Decimal = BALANCE_EPSILON) -> bool:
    """Check whether an amount falls inside the zero band."""
    return abs(amount) < tolerance


def approx_equal(a: Decimal, b: Decimal, tolerance: Decimal = SPLIT_TOLERANCE) -> bool:
    """Check whether two amounts differ by no more than the tolerance."""
    return abs(a - b) <= tolerance


def quantize_cents(amount: Decimal) -> Decimal:
    """Round to whole cents using ROUND_HALF_UP (display only)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
