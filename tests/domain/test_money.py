"""Tests for the Money value object."""

from decimal import Decimal

import pytest

from marketplace.domain import Money
from marketplace.domain.exceptions import CurrencyMismatchError, NegativeMoneyError


class TestMoney:
    """Tests for Money."""

    def test_defaults_to_inr(self) -> None:
        assert Money(100).currency == "INR"

    def test_currency_normalized_to_uppercase(self) -> None:
        assert Money(100, "usd").currency == "USD"

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(NegativeMoneyError):
            Money(-1)

    def test_from_decimal_rounds_half_up(self) -> None:
        assert Money.from_decimal(Decimal("19.995")).amount_cents == 2000

    def test_to_decimal(self) -> None:
        assert Money(1999).to_decimal() == Decimal("19.99")

    def test_addition_and_multiplication(self) -> None:
        assert Money(250) + Money(750) == Money(1000)
        assert Money(250) * 3 == Money(750)
        assert 3 * Money(250) == Money(750)

    def test_subtraction_below_zero_rejected(self) -> None:
        with pytest.raises(NegativeMoneyError):
            Money(100) - Money(101)

    def test_currency_mismatch(self) -> None:
        """Amounts in different currencies cannot be combined or compared."""
        with pytest.raises(CurrencyMismatchError):
            Money(100, "INR") + Money(100, "USD")
        with pytest.raises(CurrencyMismatchError):
            Money(100, "INR") < Money(100, "USD")

    def test_str(self) -> None:
        assert str(Money(123456)) == "1234.56 INR"
