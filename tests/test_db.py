import pytest

from checkin_pulse.errors import InvalidScheduleConfig
from checkin_pulse.models import ScheduleConfig


@pytest.mark.parametrize(
    "config",
    [
        ScheduleConfig(due_time="5pm"),
        ScheduleConfig(timezone="Europe/London"),
        ScheduleConfig(week_start_day=7),
        ScheduleConfig(reminder_weekday=-1),
    ],
)
def test_saving_invalid_schedule_raises(database, config):
    with pytest.raises(InvalidScheduleConfig):
        database.upsert_organization("org-bad", config)
    assert database.list_organization_ids() == []


def test_saving_valid_schedule_round_trips(database):
    config = ScheduleConfig(due_weekday=4, due_time="16:30", reminder_weekday=3, review_time="18:00")
    database.upsert_organization("org-1", config, name="Acme")
    assert database.get_organization_schedule("org-1") == config


def test_invalid_update_keeps_the_saved_schedule(database):
    database.upsert_organization("org-1", ScheduleConfig())
    with pytest.raises(InvalidScheduleConfig):
        database.upsert_organization("org-1", ScheduleConfig(due_time="25:00"))
    assert database.get_organization_schedule("org-1") == ScheduleConfig()


def test_unknown_organization(database):
    with pytest.raises(KeyError):
        database.get_organization_schedule("nope")
