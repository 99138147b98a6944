from __future__ import annotations

from calendar import monthrange
from datetime import date, timedelta
from typing import Optional

import structlog

from pennywise.errors import InvalidPeriodConfiguration

logger = structlog.get_logger(__name__)

ONE_DAY = timedelta(days=1)
SUPPORTED_FREQUENCIES = {"daily", "weekly", "monthly", "quarterly", "yearly"}
SUPPORTED_PERIODS = {"daily", "weekly", "monthly", "yearly"}
SUPPORTED_TIME_FRAME_UNITS = {"days", "weeks", "months", "years"}

# (days, months) offsets for the fixed time frames
FIXED_TIME_FRAMES: dict[str, tuple[int, int]] = {
    "1_week": (7, 0),
    "1_month": (0, 1),
    "3_months": (0, 3),
    "6_months": (0, 6),
    "1_year": (0, 12),
    "2_years": (0, 24),
}
SUPPORTED_TIME_FRAMES = set(FIXED_TIME_FRAMES) | {"custom"}

FREQUENCY_OFFSETS: dict[str, tuple[int, int]] = {
    "daily": (1, 0),
    "weekly": (7, 0),
    "monthly": (0, 1),
    "quarterly": (0, 3),
    "yearly": (0, 12),
}


def end_date_for(
    start_date: date,
    time_frame: Optional[str],
    time_frame_value: Optional[int] = None,
    time_frame_unit: Optional[str] = None,
) -> date:
    """Overall end date of a budget horizon starting on ``start_date``.

    Unknown or missing time frames fall back to one month.
    """
    normalized = _normalize(time_frame)
    if normalized == "custom" and time_frame_value and time_frame_unit:
        return _custom_end_date(start_date, int(time_frame_value), _normalize(time_frame_unit))

    if normalized in FIXED_TIME_FRAMES:
        days, months = FIXED_TIME_FRAMES[normalized]
        return _shift(start_date, days, months) - ONE_DAY

    logger.warning("time_frame_defaulted", time_frame=time_frame, default="1_month")
    return add_months(start_date, 1) - ONE_DAY


def next_renewal_for(start_date: date, frequency: Optional[str]) -> tuple[date, date]:
    """Return ``(end_date, next_renewal_date)`` for a period starting on ``start_date``."""
    normalized = _normalize(frequency)
    if normalized not in FREQUENCY_OFFSETS:
        logger.warning("frequency_defaulted", frequency=frequency, default="monthly")
        normalized = "monthly"

    if normalized == "daily":
        return start_date, start_date + ONE_DAY

    days, months = FREQUENCY_OFFSETS[normalized]
    next_renewal = _shift(start_date, days, months)
    return next_renewal - ONE_DAY, next_renewal


def periods_in_time_frame(
    start_date: date,
    overall_end_date: Optional[date],
    period: Optional[str],
) -> int:
    if overall_end_date is None:
        return 1

    normalized = _normalize(period)
    days = (overall_end_date - start_date).days
    if normalized == "daily":
        return days + 1
    if normalized == "weekly":
        return -(-days // 7)
    if normalized == "monthly":
        return whole_months_between(start_date, overall_end_date) + 1
    if normalized == "yearly":
        return whole_years_between(start_date, overall_end_date) + 1
    return 1


def is_time_frame_expired(overall_end_date: Optional[date], today: date) -> bool:
    if overall_end_date is None:
        return False
    return today > overall_end_date


def validate_frequency(value: str) -> str:
    normalized = _normalize(value)
    if normalized not in SUPPORTED_FREQUENCIES:
        raise InvalidPeriodConfiguration(
            "Frequency must be one of: daily, weekly, monthly, quarterly, yearly."
        )
    return normalized


def validate_period(value: str) -> str:
    normalized = _normalize(value)
    if normalized not in SUPPORTED_PERIODS:
        raise InvalidPeriodConfiguration("Period must be one of: daily, weekly, monthly, yearly.")
    return normalized


def validate_time_frame(
    time_frame: str,
    time_frame_value: Optional[int] = None,
    time_frame_unit: Optional[str] = None,
) -> str:
    normalized = _normalize(time_frame)
    if normalized not in SUPPORTED_TIME_FRAMES:
        raise InvalidPeriodConfiguration(f"Unsupported time frame: {time_frame}")
    if normalized == "custom":
        if not time_frame_value or time_frame_value <= 0:
            raise InvalidPeriodConfiguration("Custom time frames require a positive value.")
        if _normalize(time_frame_unit) not in SUPPORTED_TIME_FRAME_UNITS:
            raise InvalidPeriodConfiguration("Custom time frame unit must be days, weeks, months, or years.")
    return normalized


def current_period_bounds(period: Optional[str], today: date) -> tuple[date, date]:
    """Calendar bounds of the daily, weekly, monthly or yearly period holding ``today``.

    Weeks run Monday to Sunday. Unknown periods are treated as monthly.
    """
    normalized = _normalize(period)
    if normalized == "daily":
        return today, today
    if normalized == "weekly":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if normalized == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if normalized != "monthly":
        logger.warning("period_defaulted", period=period, default="monthly")
    start = month_start(today)
    return start, add_months(start, 1) - ONE_DAY


def add_months(start_date: date, months: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    return date(year, month, min(start_date.day, last_day))


def month_start(value: date) -> date:
    return value.replace(day=1)


def whole_months_between(start_date: date, end_date: date) -> int:
    months = (end_date.year - start_date.year) * 12 + (end_date.month - start_date.month)
    if end_date.day < start_date.day:
        months -= 1
    return max(months, 0)


def whole_years_between(start_date: date, end_date: date) -> int:
    years = end_date.year - start_date.year
    if (end_date.month, end_date.day) < (start_date.month, start_date.day):
        years -= 1
    return max(years, 0)


def _custom_end_date(start_date: date, value: int, unit: str) -> date:
    if unit == "days":
        return start_date + timedelta(days=value) - ONE_DAY
    if unit == "weeks":
        return start_date + timedelta(weeks=value) - ONE_DAY
    if unit == "months":
        return add_months(start_date, value) - ONE_DAY
    if unit == "years":
        return add_months(start_date, value * 12) - ONE_DAY
    logger.warning("time_frame_unit_defaulted", time_frame_unit=unit, default="months")
    return add_months(start_date, 1) - ONE_DAY


def _shift(start_date: date, days: int, months: int) -> date:
    if months:
        return add_months(start_date, months)
    return start_date + timedelta(days=days)


def _normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()
