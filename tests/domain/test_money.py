from decimal import Decimal

import pytest

from domain.common.money import (
    ex_to_inc,
    ex_to_inc_minor,
    format_major,
    from_minor,
    inc_to_ex,
    line_tax,
    quantize,
    to_minor,
)


RATE = Decimal("0.20")


def test_ex_to_inc_rounds_half_up():
    assert ex_to_inc(Decimal("10.00"), RATE) == Decimal("12.00")
    # 9.99 * 1.2 = 11.988
    assert ex_to_inc(Decimal("9.99"), RATE) == Decimal("11.99")
    # 0.0125 * 1.2 = 0.015
    assert ex_to_inc(Decimal("0.0125"), RATE) == Decimal("0.02")


def test_minor_units():
    assert ex_to_inc_minor(Decimal("10.00"), RATE) == 1200
    assert to_minor(Decimal("24.005")) == 2401
    assert from_minor(2400) == Decimal("24.00")
    assert from_minor(5) == Decimal("0.05")


@pytest.mark.parametrize("amount", ["0.01", "0.99", "9.99", "10.00", "33.33", "149.95", "1234.57"])
def test_inc_to_ex_within_one_minor_unit(amount):
    a = Decimal(amount)
    back = inc_to_ex(ex_to_inc(a, RATE), RATE)
    assert abs(back - a) <= Decimal("0.01")


def test_line_tax_and_format():
    assert line_tax(Decimal("10.00"), 2, RATE) == Decimal("4.00")
    assert line_tax(Decimal("8.33"), 3, RATE) == Decimal("5.00")
    assert format_major(Decimal("5")) == "5.00"
    assert quantize("2.345") == Decimal("2.35")
