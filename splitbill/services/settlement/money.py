"""
Money helpers.

The engine keeps every amount in integer minor units (cents) so that
"remaining == 0" is an exact comparison. Conversion happens only at the
edges: request parsing, receipts and notifications.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

MoneyInput = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")


def to_cents(value: MoneyInput) -> int:
    """
    Convert a major-unit amount to integer cents.

    Floats go through their string form so 0.1 becomes 10 cents,
    not 10.000000000000000555 rounded somewhere else.

    Raises:
        ValueError: If the value cannot be read as a number
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a monetary amount")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return int((amount / _CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) * _CENT).quantize(_CENT)


def format_cents(cents: int, symbol: str = "€") -> str:
    """Render cents for receipts and operator messages (e.g. "€12.50")."""
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{from_cents(abs(cents))}"
