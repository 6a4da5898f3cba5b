from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up (not banker's rounding)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Authoritative storage is integer cents."""
    return int(quantize(value) * 100)


def from_cents(cents: int | None) -> Decimal:
    if cents is None:
        return Decimal("0.00")
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_amount(cents: int | None) -> float:
    """JSON representation of a cents value as a 2-decimal number."""
    return float(from_cents(cents))


def rate_to_bps(rate: Decimal | float | int) -> int:
    """12 (%) -> 1200 basis points."""
    return int((Decimal(str(rate)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def bps_to_rate(bps: int | None) -> Decimal:
    if bps is None:
        return Decimal("0")
    return Decimal(bps) / 100
