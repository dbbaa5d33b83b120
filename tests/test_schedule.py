from datetime import date, datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from checkin_pulse.errors import InvalidScheduleConfig
from checkin_pulse.models import ScheduleConfig
from checkin_pulse.schedule import (
    compute_due_instant,
    compute_reminder_instant,
    compute_review_due_instant,
    compute_week_id,
    compute_week_start,
    due_date_label,
    schedule_config_from_mapping,
    validate_schedule_config,
    week_bounds,
    week_ending_label,
    week_id_for_instant,
)
from checkin_pulse.timezones import civil_to_instant

from conftest import central

DEFAULT = ScheduleConfig()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_default_week_runs_saturday_to_friday():
    for offset in range(7):
        day = date(2025, 11, 22) + timedelta(days=offset)
        assert compute_week_id(day, DEFAULT) == "2025-11-22"
        assert compute_due_instant(day, DEFAULT) == central(2025, 11, 28, 17)
    assert compute_week_id(date(2025, 11, 29), DEFAULT) == "2025-11-29"


def test_due_instant_in_utc():
    assert compute_due_instant(date(2025, 11, 24), DEFAULT) == utc(2025, 11, 28, 23, 0)
    assert compute_due_instant(date(2025, 7, 7), DEFAULT) == utc(2025, 7, 11, 22, 0)


@given(
    day=st.dates(min_value=date(1990, 1, 1), max_value=date(2100, 12, 31)),
    week_start=st.integers(min_value=0, max_value=6),
    due_weekday=st.integers(min_value=0, max_value=6),
)
def test_every_day_of_a_week_shares_its_id_and_deadline(day, week_start, due_weekday):
    config = ScheduleConfig(due_weekday=due_weekday, week_start_day=week_start)
    start = compute_week_start(day, config)
    assert start <= day < start + timedelta(days=7)
    days = [start + timedelta(days=offset) for offset in range(7)]
    assert {compute_week_id(d, config) for d in days} == {start.isoformat()}
    assert len({compute_due_instant(d, config) for d in days}) == 1


@given(civil=st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2060, 12, 31)))
def test_instant_falls_in_the_week_of_its_civil_date(civil):
    instant = civil_to_instant(civil, DEFAULT.timezone)
    assert week_id_for_instant(instant, DEFAULT) == compute_week_id(civil.date(), DEFAULT)


def test_friday_evening_after_deadline_stays_in_the_same_week():
    friday_evening = central(2025, 10, 10, 18)
    assert compute_due_instant(friday_evening, DEFAULT) == central(2025, 10, 10, 17)
    assert compute_due_instant(friday_evening, DEFAULT) == utc(2025, 10, 10, 22, 0)


def test_due_day_before_reference_day_is_not_skipped_forward():
    thursday = ScheduleConfig(due_weekday=4)
    assert compute_due_instant(central(2025, 10, 10, 18), thursday) == central(2025, 10, 9, 17)


def test_saturday_opens_the_next_week():
    assert compute_due_instant(central(2025, 10, 11, 8), DEFAULT) == central(2025, 10, 17, 17)


def test_aware_instant_is_converted_before_finding_the_week():
    # 03:00 UTC Saturday is still Friday evening in Chicago.
    late_friday = utc(2025, 11, 29, 3, 0)
    assert compute_week_id(late_friday, DEFAULT) == "2025-11-22"
    assert compute_week_id(late_friday.replace(tzinfo=None), DEFAULT) == "2025-11-29"


def test_due_instant_across_spring_forward():
    assert compute_due_instant(date(2025, 3, 1), DEFAULT) == utc(2025, 3, 7, 23, 0)
    assert compute_due_instant(date(2025, 3, 8), DEFAULT) == utc(2025, 3, 14, 22, 0)


def test_reminder_defaults_to_due_day_morning():
    assert compute_reminder_instant(date(2025, 11, 22), DEFAULT) == central(2025, 11, 28, 9)


def test_reminder_on_configured_day():
    config = ScheduleConfig(reminder_weekday=3, reminder_time="10:30")
    assert compute_reminder_instant(date(2025, 11, 27), config) == central(2025, 11, 26, 10, 30)


def test_review_due_defaults_to_checkin_deadline():
    assert compute_review_due_instant(date(2025, 11, 22), DEFAULT) == compute_due_instant(date(2025, 11, 22), DEFAULT)


def test_review_due_on_configured_day_and_time():
    config = ScheduleConfig(review_weekday=1, review_time="12:00")
    assert compute_review_due_instant(date(2025, 11, 28), config) == central(2025, 11, 24, 12)
    # Review time alone keeps the due weekday.
    assert compute_review_due_instant(date(2025, 11, 28), ScheduleConfig(review_time="20:00")) == central(
        2025, 11, 28, 20
    )


def test_week_bounds_cover_the_civil_week():
    start, end = week_bounds(date(2025, 11, 25), DEFAULT)
    assert start == utc(2025, 11, 22, 6, 0)
    assert end == utc(2025, 11, 29, 6, 0)


def test_week_bounds_across_fall_back_is_a_longer_week():
    start, end = week_bounds(date(2025, 11, 1), DEFAULT)
    assert end - start == timedelta(days=7, hours=1)


def test_week_id_for_instant_requires_an_aware_datetime():
    with pytest.raises(ValueError):
        week_id_for_instant(datetime(2025, 11, 24, 9), DEFAULT)


def test_labels():
    assert due_date_label(date(2025, 1, 15), DEFAULT) == "Friday, January 17, 2025 at 5:00 PM CST"
    assert due_date_label(date(2025, 7, 7), ScheduleConfig(due_time="09:05")) == "Friday, July 11, 2025 at 9:05 AM CDT"
    assert week_ending_label(date(2025, 11, 24), DEFAULT) == "Week ending Nov 28, 2025"


def test_config_from_mapping_fills_defaults():
    assert schedule_config_from_mapping({}) == DEFAULT
    assert schedule_config_from_mapping({"due_weekday": None, "due_time": None}) == DEFAULT


def test_config_from_mapping_accepts_day_names():
    config = schedule_config_from_mapping({"due_weekday": "thursday", "week_start_day": "Monday", "due_time": "16:00"})
    assert config.due_weekday == 4
    assert config.week_start_day == 1
    assert config.effective_reminder_weekday == 4


@pytest.mark.parametrize(
    "data",
    [
        {"due_weekday": 7},
        {"due_weekday": "someday"},
        {"week_start_day": -1},
        {"due_time": "5pm"},
        {"reminder_time": "25:00"},
        {"review_time": "noon"},
        {"timezone": "Europe/London"},
    ],
)
def test_config_from_mapping_rejects_malformed_values(data):
    with pytest.raises(InvalidScheduleConfig):
        schedule_config_from_mapping(data)


def test_invalid_config_fails_computation():
    with pytest.raises(InvalidScheduleConfig):
        compute_due_instant(date(2025, 1, 1), ScheduleConfig(due_time="17"))
    with pytest.raises(InvalidScheduleConfig):
        compute_week_id(date(2025, 1, 1), ScheduleConfig(week_start_day=9))
    with pytest.raises(InvalidScheduleConfig):
        validate_schedule_config(ScheduleConfig(timezone="Asia/Tokyo"))
