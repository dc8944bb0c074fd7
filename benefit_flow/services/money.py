"""Fixed-point conversions between public Decimal amounts and stored minor units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

_CENT = Decimal("0.01")
_MINOR_PER_UNIT = 100

# Minor-unit columns are signed 64-bit integers.
MAX_MINOR = 2**63 - 1


def to_minor(amount: Decimal) -> int:
    """Convert a Decimal with at most two fractional digits to minor units.

    Raises ValueError for non-finite amounts, amounts that would need rounding
    and amounts too large to store.
    """
    if not amount.is_finite():
        msg = f"Amount {amount} is not a finite number"
        raise ValueError(msg)
    try:
        quantized = amount.quantize(_CENT)
    except InvalidOperation:
        msg = f"Amount {amount} is too large"
        raise ValueError(msg) from None
    if quantized != amount:
        msg = f"Amount {amount} has more than two fractional digits"
        raise ValueError(msg)
    minor = int(quantized * _MINOR_PER_UNIT)
    if abs(minor) > MAX_MINOR:
        msg = f"Amount {amount} is too large"
        raise ValueError(msg)
    return minor


def from_minor(minor: int) -> Decimal:
    """Convert stored minor units back to a two-place Decimal."""
    return (Decimal(minor) / _MINOR_PER_UNIT).quantize(_CENT)
