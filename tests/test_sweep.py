import asyncio
import time

from checkin_pulse.db import Database
from checkin_pulse.ledger import ReminderLedger
from checkin_pulse.models import ReminderTask, ScheduleConfig, User
from checkin_pulse.notifier import LoggingReminderSink, NotifierError
from checkin_pulse.sweep import DEFAULT_FETCH_WORKERS, ReminderSweep

from conftest import NOW, ORG, WEEK, central, seed_team_week


class SlowDatabase(Database):
    """Stalls on one user's check-in lookup."""

    slow_user = "carol"

    def list_checkins(self, org_id, user_id=None, week_id=None):
        if user_id == self.slow_user:
            time.sleep(0.5)
        return super().list_checkins(org_id, user_id=user_id, week_id=week_id)


class FailingSink(LoggingReminderSink):
    async def send(self, task: ReminderTask) -> None:
        raise NotifierError(task, 503, "unavailable")


def make_sweep(store, sink=None, **kwargs) -> ReminderSweep:
    return ReminderSweep(store, ReminderLedger(store), sink or LoggingReminderSink(), **kwargs)


def test_sweep_emits_reminders_for_overdue_users(seeded):
    sink = LoggingReminderSink()
    result = asyncio.run(make_sweep(seeded, sink).run_organization(ORG, NOW))
    assert result.week_id == WEEK
    assert [task.user_id for task in result.tasks] == ["carol"]
    assert list(sink.sent) == result.tasks
    assert result.tasks[0].due_instant == central(2025, 11, 28, 17)
    assert result.tasks[0].channel == "slack"
    # Inactive users are left out of the sweep entirely.
    assert result.aggregate.total_users == 5
    assert result.aggregate.overdue == 1


def test_second_pass_does_not_repeat_reminders(seeded):
    sweep = make_sweep(seeded)
    asyncio.run(sweep.run_organization(ORG, NOW))
    again = asyncio.run(sweep.run_organization(ORG, central(2025, 11, 28, 20)))
    assert again.tasks == []
    assert again.already_reminded == ["carol"]
    assert seeded.count_ledger_entries("carol", WEEK) == 1


def test_no_reminders_before_reminder_time(seeded):
    result = asyncio.run(make_sweep(seeded).run_organization(ORG, central(2025, 11, 26, 10)))
    assert result.tasks == []
    assert result.aggregate.missing == 1
    assert seeded.count_ledger_entries("carol", WEEK) == 0


def test_missing_users_are_reminded_on_reminder_day(database):
    seed_team_week(database, ScheduleConfig(reminder_weekday=3))
    result = asyncio.run(make_sweep(database).run_organization(ORG, central(2025, 11, 26, 10)))
    assert [task.user_id for task in result.tasks] == ["carol"]


def test_slow_user_is_skipped_without_stalling_the_sweep(tmp_path):
    store = seed_team_week(SlowDatabase(tmp_path / "slow.db"))
    result = asyncio.run(make_sweep(store, fetch_timeout=0.1).run_organization(ORG, NOW))
    assert result.skipped_user_ids == ("carol",)
    assert result.tasks == []
    assert result.aggregate.submitted == 2


def test_failed_delivery_is_reported_and_not_retried(seeded):
    result = asyncio.run(make_sweep(seeded, FailingSink()).run_organization(ORG, NOW))
    assert result.failed_deliveries == ["carol"]
    assert result.tasks == []
    retry = asyncio.run(make_sweep(seeded).run_organization(ORG, NOW))
    assert retry.already_reminded == ["carol"]


def test_run_skips_misconfigured_organizations(seeded, caplog):
    # Rows written by older tooling can predate save-time validation.
    with seeded.connect() as conn:
        conn.execute(
            "INSERT INTO organizations (id, due_weekday, due_time, timezone, week_start_day) VALUES (?, ?, ?, ?, ?)",
            ("org-broken", 5, "17:00", "Europe/London", 6),
        )
        conn.commit()
    results = asyncio.run(make_sweep(seeded).run(NOW))
    assert [result.org_id for result in results] == [ORG]
    assert "org-broken" in caplog.text


def test_run_uses_clock_when_now_is_omitted(seeded):
    sweep = make_sweep(seeded, clock=lambda: NOW)
    (result,) = asyncio.run(sweep.run())
    assert result.aggregate.overdue == 1
    assert result.week_id == WEEK


class CrowdedStore:
    """In-memory organization whose check-in lookups each take a while."""

    def __init__(self, size: int, delay: float) -> None:
        self.users = [User(f"user-{n:03d}", ORG, f"User {n}", manager_id="mgr") for n in range(size)]
        self.delay = delay

    def list_organization_ids(self):
        return [ORG]

    def get_organization_schedule(self, org_id):
        return ScheduleConfig()

    def list_users(self, org_id, user_filter=None):
        return list(self.users)

    def list_checkins(self, org_id, user_id=None, week_id=None):
        time.sleep(self.delay)
        return []

    def list_reviews(self, checkin_ids):
        return []

    def list_vacations(self, org_id, user_id=None, week_id=None):
        return []

    def list_exemptions(self, org_id, user_id=None, week_id=None):
        return []


def test_waiting_for_a_worker_does_not_count_against_the_timeout(database):
    store = CrowdedStore(size=3 * DEFAULT_FETCH_WORKERS, delay=0.1)
    sweep = ReminderSweep(store, ReminderLedger(database), LoggingReminderSink(), fetch_timeout=0.25)
    result = asyncio.run(sweep.run_organization(ORG, NOW))
    assert result.skipped_user_ids == ()
    assert result.aggregate.overdue == len(store.users)
    assert len(result.tasks) == len(store.users)


def test_concurrency_limit_below_pool_size(database):
    store = CrowdedStore(size=12, delay=0.05)
    sweep = ReminderSweep(
        store, ReminderLedger(database), LoggingReminderSink(), fetch_timeout=0.2, max_concurrency=2
    )
    result = asyncio.run(sweep.run_organization(ORG, NOW))
    assert result.skipped_user_ids == ()
    assert result.aggregate.total_users == 12
