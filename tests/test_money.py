"""Tests for cent conversion."""

from decimal import Decimal

import pytest

from splitbill.services.settlement.money import format_cents, from_cents, to_cents


class TestToCents:

    @pytest.mark.parametrize("value,expected", [
        ("40.00", 4000),
        ("0.1", 10),
        (0.1, 10),
        (12, 1200),
        (Decimal("2.005"), 201),
        ("-3.50", -350),
    ])
    def test_converts(self, value, expected):
        assert to_cents(value) == expected

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", True, None])
    def test_rejects_non_amounts(self, value):
        with pytest.raises(ValueError):
            to_cents(value)


def test_from_cents_has_two_places():
    assert from_cents(1250) == Decimal("12.50")
    assert str(from_cents(5)) == "0.05"


def test_format_cents():
    assert format_cents(4000) == "€40.00"
    assert format_cents(-1000) == "-€10.00"
    assert format_cents(199, symbol="$") == "$1.99"
