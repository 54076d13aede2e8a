"""Tests for decimal amount helpers."""

from decimal import Decimal

import pytest

from odyssey.money import (
    base_units_to_decimal,
    format_amount,
    is_representable,
    limit_to_base_units,
    spend_to_base_units,
    to_decimal,
)


class TestToDecimal:
    def test_float_has_no_binary_artefacts(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")

    def test_accepts_strings_and_ints(self):
        assert to_decimal("1.25") == Decimal("1.25")
        assert to_decimal(3) == Decimal(3)

    @pytest.mark.parametrize("bad", [True, "abc", "nan", "inf", float("inf")])
    def test_rejects_invalid(self, bad):
        with pytest.raises(ValueError):
            to_decimal(bad)


class TestBaseUnits:
    def test_exact_conversion(self):
        assert spend_to_base_units("0.1", 9) == 100_000_000
        assert limit_to_base_units("0.1", 9) == 100_000_000

    def test_spend_rounds_up(self):
        assert spend_to_base_units("0.0000000001", 9) == 1
        assert spend_to_base_units("1.0000001", 6) == 1_000_001

    def test_limit_rounds_down(self):
        assert limit_to_base_units("0.0000000019", 9) == 1
        assert limit_to_base_units("1.0000009", 6) == 1_000_000

    def test_back_to_decimal(self):
        assert base_units_to_decimal(1_500_000_000, 9) == Decimal("1.5")
        assert str(base_units_to_decimal(1_500_000_000, 9)) == "1.5"

    def test_whole_numbers_stay_plain(self):
        assert str(base_units_to_decimal(100 * 10**9, 9)) == "100"
        assert str(base_units_to_decimal(0, 6)) == "0"

    def test_negative_decimals_rejected(self):
        with pytest.raises(ValueError):
            spend_to_base_units("1", -1)

    def test_beyond_default_decimal_precision(self):
        assert limit_to_base_units("20000000000", 18) == 20 * 10**27
        assert spend_to_base_units("20000000000.000000000000000001", 18) == 20 * 10**27 + 1
        assert str(base_units_to_decimal(20 * 10**27 - 1, 18)) == "19999999999.999999999999999999"

    def test_long_tail_rounds_in_one_direction(self):
        tail = "1." + "0" * 40 + "1"
        assert spend_to_base_units(tail, 0) == 2
        assert limit_to_base_units(tail, 0) == 1

    def test_too_large_for_base_units(self):
        assert is_representable("1e59", 18)
        assert not is_representable("1e60", 18)
        with pytest.raises(ValueError):
            limit_to_base_units("1e60", 18)


def test_format_amount():
    assert format_amount(Decimal("1.5"), "SOL") == "1.5000 SOL"
    assert format_amount(Decimal("0.25")) == "0.2500"
