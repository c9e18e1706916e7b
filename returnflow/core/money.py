"""Money value object.

Amounts are integer minor units (paisa for BDT) tagged with an ISO
currency code. Every place that compares or sums amounts goes through
this type, so string prices such as ``"৳1,250.00"`` are parsed once, at
the boundary, instead of ad hoc in each calculation.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

from returnflow.core.exceptions import ValidationError

MINOR_UNITS = 100
# Thousands separators and blanks inside a figure
_SEPARATORS = re.compile(r"[,\s_]")
# Currency prefix such as "৳", "Tk." or "BDT", and a trailing unit such as "Tk"
_PREFIX = re.compile(r"^[^\d.\-]+\.?")
_SUFFIX = re.compile(r"[^\d.]+$")
_NUMBER = re.compile(r"-?(\d+(\.\d*)?|\.\d+)")

Numeric = Union[int, float, str, Decimal]


@dataclass(frozen=True, order=False)
class Money:
    amount: int
    currency: str

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(0, currency)

    @classmethod
    def from_major(cls, value: Numeric, currency: str) -> "Money":
        """Build from a major-unit figure (``12.50`` -> 1250 minor units)."""
        if isinstance(value, float):
            value = Decimal(repr(value))
        if isinstance(value, str):
            cleaned = _SEPARATORS.sub("", value)
            cleaned = _SUFFIX.sub("", _PREFIX.sub("", cleaned))
            if not _NUMBER.fullmatch(cleaned):
                raise ValidationError(f"Cannot parse amount {value!r}", value=value)
            value = cleaned
        try:
            major = Decimal(value)
        except (InvalidOperation, TypeError) as exc:
            raise ValidationError(f"Cannot parse amount {value!r}", value=str(value)) from exc
        if not major.is_finite():
            raise ValidationError(f"Cannot parse amount {value!r}", value=str(value))
        minor = (major * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return cls(int(minor), currency)

    @classmethod
    def sum(cls, values: Iterable["Money"], currency: str) -> "Money":
        total = cls.zero(currency)
        for value in values:
            total = total + value
        return total

    def to_decimal(self) -> Decimal:
        return (Decimal(self.amount) / MINOR_UNITS).quantize(Decimal("0.01"))

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValidationError(
                f"Currency mismatch: {self.currency} vs {other.currency}",
                currencies=[self.currency, other.currency],
            )

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, quantity: int) -> "Money":
        if not isinstance(quantity, int):
            raise TypeError("Money can only be multiplied by an integer quantity")
        return Money(self.amount * quantity, self.currency)

    __rmul__ = __mul__

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount >= other.amount

    def clamp_zero(self) -> "Money":
        return self if self.amount >= 0 else Money.zero(self.currency)

    def __str__(self) -> str:
        return f"{self.currency} {self.to_decimal()}"
