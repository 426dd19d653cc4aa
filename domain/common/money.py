"""
Money and VAT conversion.

Processor-facing amounts are integer minor units (pence); commerce-facing
amounts are two-decimal major units. Everything here works on Decimal.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[Decimal, int, str]

TWO_PLACES = Decimal("0.01")
MINOR_PER_MAJOR = 100


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # floats carry binary noise, go through repr
        return Decimal(repr(value))
    return Decimal(str(value))


def quantize(amount: Number) -> Decimal:
    """Round to 2dp, half-up."""
    return to_decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor(amount: Number) -> int:
    return int((quantize(amount) * MINOR_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor(minor: int) -> Decimal:
    return (Decimal(int(minor)) / MINOR_PER_MAJOR).quantize(TWO_PLACES)


def ex_to_inc(amount: Number, rate: Number) -> Decimal:
    """Tax-exclusive to tax-inclusive: round(amount * (1 + rate), 2dp, half-up)."""
    return quantize(to_decimal(amount) * (Decimal(1) + to_decimal(rate)))


def ex_to_inc_minor(amount: Number, rate: Number) -> int:
    return to_minor(ex_to_inc(amount, rate))


def inc_to_ex(amount: Number, rate: Number) -> Decimal:
    """Inverse of ex_to_inc.

    Not exact: inc_to_ex(ex_to_inc(a, r), r) lands within one minor unit of a.
    """
    return quantize(to_decimal(amount) / (Decimal(1) + to_decimal(rate)))


def line_tax(unit_price_ex: Number, quantity: int, rate: Number) -> Decimal:
    return quantize(to_decimal(unit_price_ex) * quantity * to_decimal(rate))


def format_major(amount: Number) -> str:
    """Commerce APIs take money as a 2dp string."""
    return str(quantize(amount))
