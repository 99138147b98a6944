from __future__ import annotations

from decimal import Decimal
from typing import Union

Number = Union[Decimal, int, float]


def percent_of(part: Number, whole: Number) -> float:
    """``part / whole * 100`` as a float, or 0.0 when ``whole`` is zero."""
    if not whole:
        return 0.0
    return float(part) / float(whole) * 100


def safe_average(total: Decimal, count: int) -> Decimal:
    if count <= 0:
        return Decimal("0")
    return total / count
