"""
Unit tests for amount parsing and address helpers.
"""

from decimal import Decimal

import pytest

from forward_payments.core.amounts import (
    format_amount,
    from_base_units,
    is_valid_address,
    normalize_address,
    parse_amount,
    shorten_address,
    to_base_units,
)
from forward_payments.core.errors import ValidationError
from tests.conftest import DESTINATION


class TestParseAmount:
    """Test target amount validation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("0.01", Decimal("0.01")),
            (" 2 ", Decimal("2")),
            (0.05, Decimal("0.05")),
            (100, Decimal("100")),
            (Decimal("1e-18"), Decimal("1e-18")),
        ],
    )
    def test_valid(self, raw, expected) -> None:
        assert parse_amount(raw, max_amount=Decimal("100"), decimals=18) == expected

    def test_too_precise(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            parse_amount("0.0000001", max_amount=Decimal("100"), decimals=6)
        assert excinfo.value.code == "invalid_amount"

    def test_max_message_uses_symbol(self) -> None:
        with pytest.raises(ValidationError, match="5 BNB"):
            parse_amount("6", max_amount=Decimal("5"), decimals=18, symbol="BNB")

    @pytest.mark.parametrize("raw", [None, "Infinity", "1,5", "0x10"])
    def test_not_a_number(self, raw) -> None:
        with pytest.raises(ValidationError, match="valid number"):
            parse_amount(raw, max_amount=Decimal("100"), decimals=18)


class TestBaseUnits:
    """Test conversion between coins and base units."""

    def test_round_values(self) -> None:
        assert to_base_units(Decimal("0.01"), 18) == 10**16
        assert from_base_units(10**16, 18) == Decimal("0.01")

    def test_unrepresentable(self) -> None:
        with pytest.raises(ValueError):
            to_base_units(Decimal("0.1234"), 2)

    def test_format(self) -> None:
        assert format_amount(Decimal("0.01")) == "0.010000"
        assert format_amount(from_base_units(10**16 - 5000, 18)) == "0.010000"


class TestAddresses:
    """Test address validation helpers."""

    def test_valid(self) -> None:
        assert is_valid_address(DESTINATION)
        assert is_valid_address(DESTINATION[2:])
        assert normalize_address(DESTINATION.lower()) == DESTINATION

    @pytest.mark.parametrize("value", ["", "0x123", "hello", None])
    def test_invalid(self, value) -> None:
        assert not is_valid_address(value)

    def test_normalize_error_names_network(self) -> None:
        with pytest.raises(ValidationError, match="Invalid bsc address") as excinfo:
            normalize_address("0x123", network="bsc")
        assert excinfo.value.field == "destination_address"

    def test_shorten(self) -> None:
        assert shorten_address(DESTINATION) == "0x5a...eAed"
        assert shorten_address("0x12") == "0x12"
