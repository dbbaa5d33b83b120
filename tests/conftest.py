"""Shared fixtures: a temporary SQLite store seeded with one team week."""

from __future__ import annotations

from datetime import datetime

import pytest

from checkin_pulse.db import Database
from checkin_pulse.models import CheckIn, Review, ScheduleConfig, User, Vacation
from checkin_pulse.timezones import civil_to_instant

CENTRAL = "America/Chicago"
ORG = "org-1"
# Saturday-to-Friday week; check-ins due Friday 2025-11-28 at 17:00 CST.
WEEK = "2025-11-22"


def central(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Aware UTC instant for a wall-clock time in US Central."""

    return civil_to_instant(datetime(year, month, day, hour, minute), CENTRAL)


NOW = central(2025, 11, 28, 18)


def seed_team_week(database: Database, config: ScheduleConfig | None = None) -> Database:
    """Six people, one week.

    mgr has no manager and dave is inactive (both exempt), erin is on
    vacation, alice submitted on time and was reviewed, bob submitted late,
    carol has not submitted.
    """

    database.upsert_organization(ORG, config or ScheduleConfig(), name="Acme")
    for user in (
        User("mgr", ORG, "Morgan", team_id="leads"),
        User("alice", ORG, "Alice", team_id="eng", manager_id="mgr"),
        User("bob", ORG, "Bob", team_id="eng", manager_id="mgr"),
        User("carol", ORG, "Carol", team_id="eng", manager_id="mgr"),
        User("dave", ORG, "Dave", team_id="ops", manager_id="mgr", is_active=False),
        User("erin", ORG, "Erin", team_id="ops", manager_id="mgr"),
    ):
        database.upsert_user(user)

    database.record_checkin(CheckIn("c-alice", "alice", ORG, WEEK, central(2025, 11, 27, 10), True, mood=4))
    database.record_checkin(CheckIn("c-bob", "bob", ORG, WEEK, central(2025, 11, 28, 17, 30), True, mood=3))
    database.record_checkin(CheckIn("c-erin", "erin", ORG, WEEK, central(2025, 11, 26, 9), True, mood=5))
    database.record_review(Review("c-alice", "mgr", central(2025, 11, 28, 12)))
    database.upsert_vacation(Vacation("erin", ORG, WEEK, "Thanksgiving"))
    return database


@pytest.fixture
def database(tmp_path) -> Database:
    return Database(tmp_path / "pulse.db")


@pytest.fixture
def seeded(database: Database) -> Database:
    return seed_team_week(database)
