# domain/money.py
"""
Money and VAT rate value types.

Amounts are held in minor units (euro cents) so sums never drift; VAT rates
are held in basis points (2100 = 21%).

Usage:
    from domain.money import Money, VatRate

    total = Money.parse("€ 1.234,50")   # None: only one decimal separator allowed
    total = Money.parse("1234,50")      # Money(123450)
    vat = total.multiply_rate(VatRate.parse("21%"))
"""

import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

_AMOUNT_PATTERN = re.compile(r"^-?\d+(\.\d{1,2})?$")
_CURRENCY_SYMBOLS = ("€", "$", "£")


@dataclass(frozen=True, order=True)
class Money:
    """Amount in minor units (cents)."""

    minor: int

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Money"]:
        """
        Parses a human/LLM amount string.

        Strips currency symbols and spaces, accepts a comma as decimal
        separator, an optional leading minus and at most two decimals.
        Returns None for anything else.
        """
        if value is None:
            return None
        cleaned = str(value)
        for symbol in _CURRENCY_SYMBOLS:
            cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.replace(" ", "").replace("\u00a0", "").replace(",", ".").strip()

        if not cleaned or not _AMOUNT_PATTERN.match(cleaned):
            return None

        return cls.from_decimal(Decimal(cleaned))

    @classmethod
    def from_decimal(cls, value: Union[Decimal, float, int, str]) -> "Money":
        """Rounds half-up to the cent."""
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
        cents = (amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return cls(int(cents))

    @classmethod
    def of(cls, value: Union["Money", int, None]) -> "Money":
        """Wraps a raw cents column value (None → zero)."""
        if isinstance(value, Money):
            return value
        return cls(int(value or 0))

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_decimal(self) -> Decimal:
        return (Decimal(self.minor) / 100).quantize(Decimal("0.01"))

    def to_display_string(self) -> str:
        """`"123.45"`, `"-0.50"`."""
        sign = "-" if self.minor < 0 else ""
        whole, cents = divmod(abs(self.minor), 100)
        return f"{sign}{whole}.{cents:02d}"

    def __str__(self) -> str:
        return self.to_display_string()

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other: "Money") -> "Money":
        return Money(self.minor + other.minor)

    def __sub__(self, other: "Money") -> "Money":
        return Money(self.minor - other.minor)

    def __neg__(self) -> "Money":
        return Money(-self.minor)

    def multiply_rate(self, rate: "VatRate") -> "Money":
        """Applies a basis-point rate, rounding half-up."""
        amount = Decimal(self.minor) * Decimal(rate.basis_points) / Decimal(10000)
        return Money(int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    def times(self, quantity: Union[Decimal, float, int]) -> "Money":
        amount = Decimal(self.minor) * Decimal(str(quantity))
        return Money(int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    def differs_from(self, other: "Money", tolerance: int = 1) -> bool:
        return abs(self.minor - other.minor) > tolerance

    @property
    def is_zero(self) -> bool:
        return self.minor == 0

    @property
    def is_positive(self) -> bool:
        return self.minor > 0

    @property
    def is_negative(self) -> bool:
        return self.minor < 0


Money.ZERO = Money(0)


@dataclass(frozen=True, order=True)
class VatRate:
    """VAT rate in basis points."""

    basis_points: int

    @classmethod
    def parse(cls, value: Optional[Union[str, int, float]]) -> Optional["VatRate"]:
        """
        Accepts "21%", "21", "21.0", "0.21" and 21.

        Values up to 1 are read as fractions, larger values as percentages.
        """
        if value is None:
            return None
        text = str(value).replace("%", "").replace(",", ".").strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        if number < 0:
            return None
        if number < 1 and number != 0:
            number = number * 100
        return cls(int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    @classmethod
    def from_percent(cls, percent: Union[int, float, Decimal]) -> "VatRate":
        return cls(int((Decimal(str(percent)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    @property
    def percent(self) -> Decimal:
        return Decimal(self.basis_points) / 100

    def to_percent_float(self) -> float:
        return self.basis_points / 100

    @property
    def is_belgian_standard(self) -> bool:
        return self.basis_points in BELGIAN_VAT_RATES

    def __str__(self) -> str:
        percent = self.percent
        if percent == percent.to_integral_value():
            return f"{int(percent)}%"
        return f"{percent.normalize()}%"


# Belgian VAT rates: 0%, 6%, 12%, 21%
BELGIAN_VAT_RATES = frozenset({0, 600, 1200, 2100})
