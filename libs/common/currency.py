"""Money helpers.

Internal storage unit: euros as ``Decimal`` with two places (``Numeric(10, 2)``).
Processor unit: cents (``int``), the minor unit Stripe expects.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENTS_PER_EURO: int = 100
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    """Coerce a numeric value to ``Decimal`` without float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(value: Decimal | float | int | str) -> Decimal:
    """Round half-up at the cent boundary (2.345 -> 2.35)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def euros_to_cents(amount: Decimal | float | int | str) -> int:
    """Convert euros to cents (round half-up). €1 = 100 cents."""
    return int(round_cents(amount) * CENTS_PER_EURO)


def cents_to_euros(cents: int) -> Decimal:
    """Convert cents to euros."""
    return round_cents(Decimal(cents) / CENTS_PER_EURO)
