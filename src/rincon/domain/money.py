from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float | int) -> int:
    """Round to the nearest whole currency unit, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def percentage(part: int, whole: int) -> float:
    # one decimal place, 0 when there is nothing to divide by
    if whole <= 0:
        return 0.0
    return round_half_up(part / whole * 1000) / 10
