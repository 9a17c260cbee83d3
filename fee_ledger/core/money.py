"""Conversion between API rupee amounts (Decimal) and stored minor units (integer paise)."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

MINOR_UNITS = 100
_TWO_PLACES = Decimal("0.01")


def to_minor(amount: Union[Decimal, int, str]) -> int:
    """Rupees to paise. Callers validate precision; anything finer than a paisa is rounded half-up."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(amount: int) -> Decimal:
    return (Decimal(amount) / MINOR_UNITS).quantize(_TWO_PLACES)


def has_sub_minor_precision(amount: Decimal) -> bool:
    return amount != amount.quantize(_TWO_PLACES)
