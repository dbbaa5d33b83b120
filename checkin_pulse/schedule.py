"""Due, reminder and review instants for an organization's check-in week.

Everything here is a single pipeline: civil week start, then the configured
weekday and clock time within that week, then the organization's timezone.
Callers should never do their own date arithmetic on top of these results.
"""

from __future__ import annotations

from dataclasses import fields
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Optional, Tuple, Union

from .civil import DAY_NAMES, nth_weekday_at, parse_time_of_day, start_of_week
from .errors import InvalidScheduleConfig
from .models import ScheduleConfig
from .timezones import civil_to_instant, get_zone_rule, instant_to_civil

Reference = Union[date, datetime]

_WEEKDAY_FIELDS = ("due_weekday", "reminder_weekday", "week_start_day", "review_weekday")
_TIME_FIELDS = ("due_time", "reminder_time", "review_time")


def _coerce_weekday(field: str, value: Any) -> int:
    if isinstance(value, str):
        lowered = value.strip().lower()
        for index, name in enumerate(DAY_NAMES):
            if name.lower() == lowered:
                return index
        if lowered.isdigit():
            value = int(lowered)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        raise InvalidScheduleConfig(field, value, "weekday must be 0 (Sunday) to 6 (Saturday) or a day name")
    return value


def validate_schedule_config(config: ScheduleConfig) -> ScheduleConfig:
    """Check every field of ``config`` and return it unchanged."""

    for field in _WEEKDAY_FIELDS:
        value = getattr(config, field)
        if value is not None and value != _coerce_weekday(field, value):
            raise InvalidScheduleConfig(field, value, "weekday must be an integer")
    for field in _TIME_FIELDS:
        value = getattr(config, field)
        if value is not None:
            parse_time_of_day(value, field)
    get_zone_rule(config.timezone)
    return config


def schedule_config_from_mapping(data: Mapping[str, Any]) -> ScheduleConfig:
    """Build a validated config from stored or submitted settings.

    Absent or ``None`` values take the defaults; present values that are
    malformed raise :class:`InvalidScheduleConfig` instead of being replaced.
    Day names such as ``"friday"`` are accepted for the weekday fields.
    """

    defaults = ScheduleConfig()
    values = {}
    for field in fields(ScheduleConfig):
        raw = data.get(field.name)
        if raw is None:
            values[field.name] = getattr(defaults, field.name)
        elif field.name in _WEEKDAY_FIELDS:
            values[field.name] = _coerce_weekday(field.name, raw)
        else:
            values[field.name] = raw
    return validate_schedule_config(ScheduleConfig(**values))


def civil_date(reference: Reference, config: ScheduleConfig) -> date:
    """Return the civil date of ``reference`` in the organization's timezone.

    Aware datetimes are converted first; dates and naive datetimes are
    taken to already be civil values.
    """

    if isinstance(reference, datetime):
        if reference.tzinfo is not None:
            return instant_to_civil(reference, config.timezone).date()
        return reference.date()
    return reference


def compute_week_start(reference: Reference, config: ScheduleConfig) -> date:
    validate_schedule_config(config)
    return start_of_week(civil_date(reference, config), config.week_start_day)


def compute_week_id(reference: Reference, config: ScheduleConfig) -> str:
    """Canonical key for the week containing ``reference``."""

    return compute_week_start(reference, config).isoformat()


def week_id_for_instant(instant: datetime, config: ScheduleConfig) -> str:
    """Week identifier to store with a record submitted at ``instant``."""

    if instant.tzinfo is None:
        raise ValueError("submission instants must be timezone-aware")
    return compute_week_id(instant, config)


def current_week_id(now: datetime, config: ScheduleConfig) -> str:
    return week_id_for_instant(now, config)


def _instant_in_week(reference: Reference, config: ScheduleConfig, weekday: int, clock: str, field: str) -> datetime:
    week_start = compute_week_start(reference, config)
    hour, minute = parse_time_of_day(clock, field)
    return civil_to_instant(nth_weekday_at(week_start, weekday, hour, minute), config.timezone)


def compute_due_instant(reference: Reference, config: ScheduleConfig) -> datetime:
    """Check-in deadline (aware UTC) for the week containing ``reference``."""

    return _instant_in_week(reference, config, config.due_weekday, config.due_time, "due_time")


def compute_reminder_instant(reference: Reference, config: ScheduleConfig) -> datetime:
    return _instant_in_week(
        reference, config, config.effective_reminder_weekday, config.reminder_time, "reminder_time"
    )


def compute_review_due_instant(reference: Reference, config: ScheduleConfig) -> datetime:
    """Manager review deadline; the check-in deadline unless configured."""

    return _instant_in_week(
        reference, config, config.effective_review_weekday, config.effective_review_time, "review_time"
    )


def week_bounds(reference: Reference, config: ScheduleConfig) -> Tuple[datetime, datetime]:
    """Return the ``[start, end)`` instants of the civil week."""

    week_start = compute_week_start(reference, config)
    start = civil_to_instant(datetime.combine(week_start, datetime.min.time()), config.timezone)
    end = civil_to_instant(
        datetime.combine(week_start + timedelta(days=7), datetime.min.time()), config.timezone
    )
    return start, end


def is_submitted_on_time(submitted_at: Optional[datetime], due_instant: datetime) -> bool:
    return submitted_at is not None and submitted_at <= due_instant


def is_reviewed_on_time(reviewed_at: Optional[datetime], review_due_instant: datetime) -> bool:
    return reviewed_at is not None and reviewed_at <= review_due_instant


def due_date_label(reference: Reference, config: ScheduleConfig) -> str:
    """Human-readable due date, e.g. ``Friday, January 17, 2025 at 5:00 PM CST``."""

    local = instant_to_civil(compute_due_instant(reference, config), config.timezone)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return (
        f"{local:%A}, {local:%B} {local.day}, {local.year} "
        f"at {hour}:{local.minute:02d} {meridiem} {local.tzname()}"
    )


def week_ending_label(reference: Reference, config: ScheduleConfig) -> str:
    last_day = compute_week_start(reference, config) + timedelta(days=6)
    return f"Week ending {last_day:%b} {last_day.day}, {last_day.year}"


__all__ = [
    "Reference",
    "validate_schedule_config",
    "schedule_config_from_mapping",
    "civil_date",
    "compute_week_start",
    "compute_week_id",
    "week_id_for_instant",
    "current_week_id",
    "compute_due_instant",
    "compute_reminder_instant",
    "compute_review_due_instant",
    "week_bounds",
    "is_submitted_on_time",
    "is_reviewed_on_time",
    "due_date_label",
    "week_ending_label",
]
