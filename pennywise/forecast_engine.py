from __future__ import annotations

import math
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from pennywise.period_calculator import add_months, month_start
from pennywise.ratios import percent_of

ZERO = Decimal("0")
TREND_THRESHOLD_PERCENT = 5.0
MIN_STABILITY_MONTHS = 2
MIN_TREND_MONTHS = 3
DIVERSITY_THRESHOLD = 50.0
PRIMARY_SOURCE_THRESHOLD = 70.0


def average_monthly_change(totals: Sequence[Decimal]) -> Decimal:
    if len(totals) < 2:
        return ZERO
    changes = [_decimal(current) - _decimal(previous) for previous, current in zip(totals, totals[1:])]
    return sum(changes, ZERO) / len(changes)


def linear_forecast(
    totals: Sequence[Decimal],
    months: int,
    anchor: date,
) -> list[dict]:
    """Project ``months`` totals past ``anchor``'s month from the average change.

    Projections never go below zero and are keyed by the calendar months that
    follow the anchor.
    """
    change = average_monthly_change(totals)
    last_known = _decimal(totals[-1]) if totals else ZERO
    first_month = month_start(anchor)

    forecast = []
    for step in range(1, months + 1):
        month = add_months(first_month, step)
        projected = last_known + change * step
        forecast.append(
            {
                "month": month.strftime("%b %Y"),
                "month_key": month.strftime("%Y-%m"),
                "projected_total": max(ZERO, projected),
                "is_forecast": True,
            }
        )
    return forecast


def trend_direction(totals: Sequence[Decimal]) -> str:
    if len(totals) < MIN_TREND_MONTHS:
        return "stable"
    middle = len(totals) // 2
    first_half = [float(value) for value in totals[:middle]]
    second_half = [float(value) for value in totals[middle:]]
    first_average = sum(first_half) / len(first_half)
    second_average = sum(second_half) / len(second_half)

    change = percent_of(second_average - first_average, first_average) if first_average > 0 else 0.0
    if change > TREND_THRESHOLD_PERCENT:
        return "increasing"
    if change < -TREND_THRESHOLD_PERCENT:
        return "decreasing"
    return "stable"


def stability_analysis(totals: Sequence[Decimal]) -> dict:
    """Mean, population deviation and a 0-100 stability score of monthly totals."""
    count = len(totals)
    average = sum((_decimal(value) for value in totals), ZERO) / count if count else ZERO
    if count < MIN_STABILITY_MONTHS:
        return {
            "stability_score": None,
            "average_monthly_total": average,
            "standard_deviation": None,
            "monthly_variation": None,
            "trend": trend_direction(totals),
            "month_count": count,
            "sufficient_data": False,
        }

    mean = float(average)
    variance = sum((float(value) - mean) ** 2 for value in totals) / count
    deviation = math.sqrt(variance)
    variation = deviation / mean * 100 if mean > 0 else 0.0
    return {
        "stability_score": max(0.0, 100 - variation),
        "average_monthly_total": average,
        "standard_deviation": deviation,
        "monthly_variation": variation,
        "trend": trend_direction(totals),
        "month_count": count,
        "sufficient_data": True,
    }


def diversity_analysis(category_totals: Iterable[tuple[str, Decimal]]) -> dict:
    """Score how spread out totals are across categories (HHI based, 0-100)."""
    ranked = sorted(
        ((name, _decimal(total)) for name, total in category_totals),
        key=lambda entry: -entry[1],
    )
    grand_total = sum((total for _, total in ranked), ZERO)
    count = len(ranked)

    if grand_total <= ZERO or count <= 1:
        return {
            "diversity_score": 0.0,
            "hhi": None,
            "primary_source": ranked[0][0] if ranked else None,
            "primary_source_percentage": 100.0 if ranked else 0.0,
            "source_count": count,
            "sufficient_diversity": False,
            "sources": [],
        }

    shares = [(name, total, float(total / grand_total)) for name, total in ranked]
    hhi = sum(share * share for _, _, share in shares)
    score = min(100.0, max(0.0, (1 - hhi) * 100))
    primary_name, primary_total, _ = shares[0]
    primary_percentage = percent_of(primary_total, grand_total)
    return {
        "diversity_score": score,
        "hhi": hhi,
        "primary_source": primary_name,
        "primary_source_percentage": primary_percentage,
        "source_count": count,
        "sufficient_diversity": score > DIVERSITY_THRESHOLD and primary_percentage < PRIMARY_SOURCE_THRESHOLD,
        "sources": [
            {"name": name, "amount": total, "percentage": share * 100}
            for name, total, share in shares
        ],
    }


def growth_data(monthly: Iterable[tuple[str, Decimal]]) -> list[dict]:
    result = []
    previous: Optional[Decimal] = None
    for month_key, total in monthly:
        total = _decimal(total)
        entry = {"month": month_key, "total": total, "growth_amount": None, "growth_rate": None}
        if previous is not None:
            growth = total - previous
            entry["growth_amount"] = growth
            entry["growth_rate"] = percent_of(growth, previous) if previous > ZERO else 0.0
        previous = total
        result.append(entry)
    return result


def _decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
