"""Civil calendar arithmetic with no timezone knowledge.

Weekdays are numbered 0 = Sunday through 6 = Saturday throughout the
package, matching the organization settings stored by the admin UI.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from .errors import InvalidScheduleConfig

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})")


def sunday_weekday(day: date) -> int:
    """Return the weekday of ``day`` with Sunday as 0."""

    return (day.weekday() + 1) % 7


def _check_weekday(field: str, weekday: int) -> int:
    if isinstance(weekday, bool) or not isinstance(weekday, int) or not 0 <= weekday <= 6:
        raise InvalidScheduleConfig(field, weekday, "weekday must be an integer from 0 (Sunday) to 6 (Saturday)")
    return weekday


def _check_clock(hour: int, minute: int) -> None:
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        raise InvalidScheduleConfig("hour", hour, "hour must be between 0 and 23")
    if isinstance(minute, bool) or not isinstance(minute, int) or not 0 <= minute <= 59:
        raise InvalidScheduleConfig("minute", minute, "minute must be between 0 and 59")


def start_of_week(day: date, week_start_day: int) -> date:
    """Return the most recent ``week_start_day`` on or before ``day``."""

    _check_weekday("week_start_day", week_start_day)
    if isinstance(day, datetime):
        day = day.date()
    back = (sunday_weekday(day) - week_start_day) % 7
    return day - timedelta(days=back)


def nth_weekday_at(week_start: date, weekday: int, hour: int, minute: int) -> datetime:
    """Advance from ``week_start`` to ``weekday`` and set the clock.

    The advance is 0-6 days, so a ``week_start`` that already falls on
    ``weekday`` is returned as is. The result is a naive civil datetime.
    """

    _check_weekday("weekday", weekday)
    _check_clock(hour, minute)
    if isinstance(week_start, datetime):
        week_start = week_start.date()
    forward = (weekday - sunday_weekday(week_start)) % 7
    return datetime.combine(week_start + timedelta(days=forward), time(hour, minute))


def nth_sunday(year: int, month: int, n: int) -> date:
    """Return the ``n``-th Sunday (1-based) of ``month`` in ``year``."""

    first = date(year, month, 1)
    return first + timedelta(days=(6 - first.weekday()) % 7 + 7 * (n - 1))


def parse_time_of_day(value: str, field: str = "time") -> Tuple[int, int]:
    """Parse a strict ``HH:MM`` string into ``(hour, minute)``."""

    match = _TIME_PATTERN.fullmatch(value) if isinstance(value, str) else None
    if not match:
        raise InvalidScheduleConfig(field, value, "expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidScheduleConfig(field, value, "time of day out of range")
    return hour, minute


def shift_weeks(week_id: str, weeks: int) -> str:
    """Move a week identifier forward (or back, if negative) by whole weeks."""

    return (date.fromisoformat(week_id) + timedelta(weeks=weeks)).isoformat()


def day_name(weekday: int) -> str:
    return DAY_NAMES[_check_weekday("weekday", weekday)]


def weekday_from_name(name: Optional[str], default: int = 5) -> int:
    """Convert a legacy day name such as ``"friday"`` to its number.

    Unknown or empty names map to ``default``.
    """

    if not name:
        return default
    lowered = name.strip().lower()
    for index, candidate in enumerate(DAY_NAMES):
        if candidate.lower() == lowered:
            return index
    return default


__all__ = [
    "DAY_NAMES",
    "sunday_weekday",
    "start_of_week",
    "nth_weekday_at",
    "nth_sunday",
    "parse_time_of_day",
    "shift_weeks",
    "day_name",
    "weekday_from_name",
]
