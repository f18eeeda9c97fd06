"""Exact decimal helpers for prices, quantities and money.

All monetary and price values in the engine are Decimal. Floats only appear at
the edges (random walk generation, confidence scores) and are converted through
str() so no binary noise leaks into the arithmetic.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence, Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"not a decimal number: {value!r}") from e


def percent(value: Number) -> Decimal:
    """15 -> 0.15"""
    return to_decimal(value) / HUNDRED


def quantize_to(value: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Cut a value to an instrument's fractional digits (floor by default)."""
    if decimals < 0:
        return value
    return value.quantize(ONE.scaleb(-decimals), rounding=rounding)


def display(value: Optional[Decimal], places: int = 2) -> str:
    if value is None:
        return "-"
    return str(value.quantize(ONE.scaleb(-places), rounding=ROUND_HALF_EVEN))


def dsum(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for v in values:
        total += v
    return total


def mean(values: Sequence[Decimal]) -> Optional[Decimal]:
    if not values:
        return None
    return dsum(values) / len(values)


def pstdev(values: Sequence[Decimal]) -> Optional[Decimal]:
    """Population standard deviation."""
    m = mean(values)
    if m is None:
        return None
    variance = dsum((v - m) ** 2 for v in values) / len(values)
    return variance.sqrt()


def stdev(values: Sequence[Decimal]) -> Optional[Decimal]:
    """Sample standard deviation (n - 1)."""
    if len(values) < 2:
        return None
    m = dsum(values) / len(values)
    variance = dsum((v - m) ** 2 for v in values) / (len(values) - 1)
    return variance.sqrt()
