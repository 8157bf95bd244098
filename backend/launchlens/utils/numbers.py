"""Decimal rounding helpers for money and percentages.

Python's `round()` uses banker's rounding; dashboards expect standard
half-up rounding ("18.175" -> "18.18"), so everything goes through Decimal.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[int, float, Decimal, None]

TWO_PLACES = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise along
    return Decimal(str(value))


def round_half_up(value: Number, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def two_places(value: Number) -> str:
    """Format as a 2-decimal string: 150 -> "150.00"."""
    return str(to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def safe_ratio(numerator: Number, denominator: Number) -> Decimal:
    """numerator / denominator, or 0 when the denominator is 0 or missing."""
    denom = to_decimal(denominator)
    if denom == 0:
        return Decimal("0")
    return to_decimal(numerator) / denom


def percent_change(current: Number, previous: Number) -> float:
    """Trend in percent with one decimal; 0 when the previous value is 0."""
    prev = to_decimal(previous)
    if prev == 0:
        return 0.0
    change = (to_decimal(current) - prev) / prev * 100
    return float(round_half_up(change, 1))


def percent_of(part: Number, whole: Number, places: int = 2) -> Optional[float]:
    """part / whole * 100 rounded half-up; None when whole is 0 or missing."""
    if whole is None or to_decimal(whole) == 0:
        return None
    return float(round_half_up(to_decimal(part) / to_decimal(whole) * 100, places))
