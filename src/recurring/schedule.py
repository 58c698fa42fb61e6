"""
Recurrence rules.

Interval validation and next-date arithmetic for recurring templates.
Pure functions; dates only, no times or time zones.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

from src.errors import InvalidIntervalError
from src.models.recurring import RepeatInterval


def normalize_interval(value: Optional[str]) -> RepeatInterval:
    """Trimmed, case-insensitive interval name."""
    raw = (value or "").strip().lower()
    try:
        return RepeatInterval(raw)
    except ValueError:
        allowed = ", ".join(i.value for i in RepeatInterval)
        raise InvalidIntervalError(
            f"Invalid repeat interval '{raw}', expected one of: {allowed}"
        )


def validate_interval_fields(
    interval: RepeatInterval,
    day_of_month: Optional[int],
    day_of_week: Optional[int],
) -> None:
    """
    daily:           neither day field
    weekly:          day_of_week in 0..6 (0 = Sunday), no day_of_month
    monthly, yearly: day_of_month in 1..31, no day_of_week
    """
    if interval == RepeatInterval.DAILY:
        if day_of_month is not None or day_of_week is not None:
            raise InvalidIntervalError(
                "day_of_month and day_of_week must be empty for a daily interval"
            )
    elif interval == RepeatInterval.WEEKLY:
        if day_of_week is None:
            raise InvalidIntervalError(
                "day_of_week is required for a weekly interval", field="day_of_week"
            )
        if not 0 <= day_of_week <= 6:
            raise InvalidIntervalError(
                "day_of_week must be between 0 (Sunday) and 6 (Saturday)", field="day_of_week"
            )
        if day_of_month is not None:
            raise InvalidIntervalError(
                "day_of_month must be empty for a weekly interval", field="day_of_month"
            )
    else:
        if day_of_month is None:
            raise InvalidIntervalError(
                f"day_of_month is required for a {interval.value} interval", field="day_of_month"
            )
        if not 1 <= day_of_month <= 31:
            raise InvalidIntervalError(
                "day_of_month must be between 1 and 31", field="day_of_month"
            )
        if day_of_week is not None:
            raise InvalidIntervalError(
                f"day_of_week must be empty for a {interval.value} interval", field="day_of_week"
            )


def _clamped(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def next_occurrence(
    current: date,
    interval: RepeatInterval,
    day_of_month: Optional[int] = None,
) -> date:
    """
    The occurrence after ``current``.

    Monthly and yearly move by calendar month/year and then pin to the
    requested day_of_month, clamped to the last day of the target month:
    Jan 31 -> Feb 28 (or 29) -> Mar 31.
    """
    if interval == RepeatInterval.DAILY:
        return current + timedelta(days=1)
    if interval == RepeatInterval.WEEKLY:
        return current + timedelta(days=7)

    day = day_of_month or current.day
    if interval == RepeatInterval.MONTHLY:
        year, month = divmod(current.month, 12)
        return _clamped(current.year + year, month + 1, day)
    return _clamped(current.year + 1, current.month, day)


def should_deactivate(next_date: date, end_date: Optional[date]) -> bool:
    """A template stops once its next date would land on or after the end date."""
    return end_date is not None and next_date >= end_date
