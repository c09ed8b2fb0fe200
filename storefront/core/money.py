"""
Money value object for displaying order amounts in their currency.

Amounts are held as Decimal rounded to the currency's minor unit. Negative
values are allowed (credit owed, refunds).
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from storefront.core.config import get_settings

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}

# Currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "CRC"}

Amount = Union[Decimal, int, float, str]


def _to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """
    Immutable monetary amount with currency.

    Example:
        >>> Money(10.55)
        Money(amount=Decimal('10.55'), currency='USD')
        >>> str(Money(Decimal("1234.5"), "USD"))
        '$1,234.50'
    """

    amount: Decimal
    currency: str = ""

    def __init__(self, amount: Amount, currency: str = "") -> None:
        currency = (currency or get_settings().currency).upper()
        if len(currency) != 3:
            raise ValueError(f"Invalid currency code: {currency}")

        exponent = Decimal("1") if currency in ZERO_DECIMAL_CURRENCIES else Decimal("0.01")
        normalized = _to_decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)

        object.__setattr__(self, "amount", normalized)
        object.__setattr__(self, "currency", currency)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def _check_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other)}")
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot combine different currencies: {self.currency} and {other.currency}"
            )

    @property
    def symbol(self) -> str:
        return CURRENCY_SYMBOLS.get(self.currency, f"{self.currency} ")

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def format(self) -> str:
        """Format the amount with symbol and thousands separator."""
        places = 0 if self.currency in ZERO_DECIMAL_CURRENCIES else 2
        sign = "-" if self.amount < 0 else ""
        return f"{sign}{self.symbol}{abs(self.amount):,.{places}f}"

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"Money(amount=Decimal('{self.amount}'), currency='{self.currency}')"

    @classmethod
    def zero(cls, currency: str = "") -> "Money":
        return cls(Decimal("0"), currency)
