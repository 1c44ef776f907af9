"""Fixed-precision money arithmetic on integer minor units."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENTS_PER_UNIT = 100
Q2 = Decimal("0.01")
ZERO_PERCENT = Decimal("0.00")
# Exclusive upper bound of a NUMERIC(14, 2) column.
MAX_AMOUNT = Decimal("1000000000000")


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Money values must not be built from float.")
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid money value: {value!r}") from exc


def has_whole_cents(value: Decimal | int | str) -> bool:
    """Whether ``value`` is representable without rounding to cents."""

    amount = _to_decimal(value)
    if not amount.is_finite():
        return False
    return amount == amount.quantize(Q2, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True, order=True)
class Money:
    """Currency amount held as an integer count of cents.

    Values enter through ``from_major`` and leave through ``to_major``; in
    between, every operation works on whole cents so that no intermediate
    float or unrounded decimal accumulates drift.
    """

    cents: int

    @classmethod
    def from_major(cls, value: Decimal | int | str) -> Money:
        amount = _to_decimal(value)
        if not amount.is_finite():
            raise ValueError(f"Invalid money value: {value!r}")
        minor = (amount * CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return cls(int(minor))

    @classmethod
    def zero(cls) -> Money:
        return cls(0)

    def to_major(self) -> Decimal:
        return (Decimal(self.cents) / CENTS_PER_UNIT).quantize(Q2)

    def add(self, other: Money) -> Money:
        return Money(self.cents + other.cents)

    def subtract(self, other: Money) -> Money:
        return Money(self.cents - other.cents)

    def percentage_of(self, rate: Decimal | int | str) -> Money:
        """``rate`` percent of this amount, rounded half-up to the cent."""

        scaled = Decimal(self.cents) * _to_decimal(rate) / Decimal(100)
        return Money(int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    def clamp_non_negative(self) -> Money:
        return self if self.cents >= 0 else Money(0)

    def __add__(self, other: Money) -> Money:
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        return self.subtract(other)

    def __str__(self) -> str:
        return str(self.to_major())


def money_sum(values: Iterable[Money]) -> Money:
    return Money(sum(value.cents for value in values))


def percentage(part: Money, whole: Money) -> Decimal:
    """``part / whole * 100`` rounded to 2 places; 0 when ``whole`` is not positive."""

    if whole.cents <= 0:
        return ZERO_PERCENT
    ratio = Decimal(part.cents) * Decimal(100) / Decimal(whole.cents)
    return ratio.quantize(Q2, rounding=ROUND_HALF_UP)
