from decimal import Decimal

import pytest

from qorinti.utils.money import ZERO, clamp_non_negative, round2, to_decimal
from qorinti.utils.text import clean_optional


@pytest.mark.parametrize(
    "value, expected",
    [
        ("10", Decimal("10.00")),
        ("0.005", Decimal("0.01")),
        ("0.004", Decimal("0.00")),
        ("2.675", Decimal("2.68")),
        (-1.005, Decimal("-1.01")),
        (7, Decimal("7.00")),
        (0.1 + 0.2, Decimal("0.30")),
    ],
)
def test_round2_half_up(value, expected):
    assert round2(value) == expected
    assert round2(value).as_tuple().exponent == -2


def test_float_goes_through_its_repr():
    assert to_decimal(2.675) == Decimal("2.675")


@pytest.mark.parametrize("value", ["abc", "", None, "NaN", "Infinity", Decimal("-Infinity"), float("nan")])
def test_non_amounts_rejected(value):
    with pytest.raises(ValueError, match="Not a monetary amount"):
        round2(value)


def test_clamp_non_negative():
    assert clamp_non_negative(Decimal("-0.01")) == ZERO
    assert clamp_non_negative(Decimal("3.50")) == Decimal("3.50")


def test_clean_optional():
    assert clean_optional("  OP-1 ") == "OP-1"
    assert clean_optional("   ") is None
    assert clean_optional(None) is None
