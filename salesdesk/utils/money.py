from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from functools import total_ordering
from typing import Any, Iterable, List

from ..core.errors import DomainError, ErrorKind

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        raise DomainError(ErrorKind.VALIDATION, f"{field} must be a number", {"field": field})
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise DomainError(ErrorKind.VALIDATION, f"{field} must be a number", {"field": field}) from None
    if not result.is_finite():
        raise DomainError(ErrorKind.VALIDATION, f"{field} must be a finite number", {"field": field})
    return result


def round_to(value: Decimal, places: int = 2) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


def format_amount(value: Decimal) -> str:
    """1234567.5 -> '1,234,567.50'"""
    return f"{round_to(value):,.2f}"


@total_ordering
@dataclass(frozen=True)
class Money:
    """Amount held as an integer count of minor units (piasters for EGP)."""

    minor: int
    currency: str = "EGP"

    @classmethod
    def of(cls, value: Any, currency: str = "EGP") -> "Money":
        cents = (to_decimal(value) * HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_EVEN)
        return cls(int(cents), currency)

    @classmethod
    def zero(cls, currency: str = "EGP") -> "Money":
        return cls(0, currency)

    @property
    def amount(self) -> Decimal:
        return Decimal(self.minor).scaleb(-2)

    def _same_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise DomainError(
                ErrorKind.VALIDATION,
                "Cannot combine amounts in different currencies",
                {"currencies": [self.currency, other.currency]},
            )

    def add(self, other: "Money") -> "Money":
        self._same_currency(other)
        return Money(self.minor + other.minor, self.currency)

    def sub(self, other: "Money") -> "Money":
        self._same_currency(other)
        return Money(self.minor - other.minor, self.currency)

    def mul(self, factor: Any) -> "Money":
        return Money.of(self.amount * to_decimal(factor, "factor"), self.currency)

    def div(self, divisor: Any) -> "Money":
        divisor_value = to_decimal(divisor, "divisor")
        if divisor_value == 0:
            raise DomainError(ErrorKind.VALIDATION, "Cannot divide an amount by zero")
        return Money.of(self.amount / divisor_value, self.currency)

    def percent_of(self, percent: Any) -> "Money":
        return self.mul(to_decimal(percent, "percent") / HUNDRED)

    def round_to(self, places: int = 2) -> Decimal:
        return round_to(self.amount, places)

    def allocate(self, parts: int) -> List["Money"]:
        """Split into ``parts`` amounts that differ by at most one minor unit and sum exactly."""
        if parts <= 0:
            raise DomainError(ErrorKind.VALIDATION, "Cannot allocate over zero parts")
        sign = -1 if self.minor < 0 else 1
        base, remainder = divmod(abs(self.minor), parts)
        return [Money(sign * (base + (1 if index < remainder else 0)), self.currency) for index in range(parts)]

    def is_zero(self) -> bool:
        return self.minor == 0

    def is_negative(self) -> bool:
        return self.minor < 0

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        return self.sub(other)

    def __lt__(self, other: "Money") -> bool:
        self._same_currency(other)
        return self.minor < other.minor

    def __str__(self) -> str:
        return f"{format_amount(self.amount)} {self.currency}"


def sum_money(items: Iterable[Money], currency: str = "EGP") -> Money:
    total = Money.zero(currency)
    for item in items:
        total = total.add(item)
    return total
