import logging
from datetime import date, timedelta

from checkin_pulse.buckets import DailyBucketBuilder
from checkin_pulse.models import CheckIn, DailyBucket, Review, ScheduleConfig

from conftest import NOW, ORG, WEEK, central


def builder(store) -> DailyBucketBuilder:
    return DailyBucketBuilder(store, store, clock=lambda: NOW)


def snapshot(store):
    return [
        (b.user_id, b.bucket_date, b.checkin_compliance_count, b.checkin_on_time_count,
         b.review_compliance_count, b.review_on_time_count)
        for b in store.list_daily_buckets(ORG)
    ]


def test_user_day_counts(seeded):
    buckets = builder(seeded)
    alice = buckets.compute_user_day(ORG, "alice", date(2025, 11, 27))
    assert (alice.checkin_compliance_count, alice.checkin_on_time_count) == (1, 1)
    assert alice.team_id == "eng"
    bob = buckets.compute_user_day(ORG, "bob", date(2025, 11, 28))
    assert (bob.checkin_compliance_count, bob.checkin_on_time_count) == (1, 0)
    mgr = buckets.compute_user_day(ORG, "mgr", date(2025, 11, 28))
    assert (mgr.review_compliance_count, mgr.review_on_time_count) == (1, 1)
    assert mgr.checkin_compliance_count == 0


def test_vacation_week_and_empty_days_produce_no_bucket(seeded):
    buckets = builder(seeded)
    assert buckets.compute_user_day(ORG, "erin", date(2025, 11, 26)) is None
    assert buckets.compute_user_day(ORG, "carol", date(2025, 11, 28)) is None


def test_incremental_sweep_builds_buckets_and_advances_watermark(seeded):
    buckets = builder(seeded)
    assert buckets.incremental_sweep(ORG) == 4
    assert snapshot(seeded) == [
        ("alice", date(2025, 11, 27), 1, 1, 0, 0),
        ("bob", date(2025, 11, 28), 1, 0, 0, 0),
        ("mgr", date(2025, 11, 28), 0, 0, 1, 1),
    ]
    assert seeded.get_watermark(ORG) == central(2025, 11, 28, 17, 30)


def test_incremental_sweep_only_touches_new_events(seeded):
    buckets = builder(seeded)
    buckets.incremental_sweep(ORG)
    seeded.record_checkin(CheckIn("c-carol", "carol", ORG, WEEK, central(2025, 11, 28, 19), True))
    # bob's submission sits exactly on the watermark and is recomputed too.
    assert buckets.incremental_sweep(ORG, now=central(2025, 11, 28, 20)) == 2
    carol = seeded.list_daily_buckets(ORG, user_id="carol")
    assert [(b.checkin_compliance_count, b.checkin_on_time_count) for b in carol] == [(1, 0)]
    assert seeded.get_watermark(ORG) == central(2025, 11, 28, 19)


def test_sweep_without_events_moves_watermark_to_now(database):
    database.upsert_organization(ORG, ScheduleConfig())
    assert builder(database).incremental_sweep(ORG) == 0
    assert database.get_watermark(ORG) == NOW


def test_rebuild_reproduces_incremental_results(seeded):
    buckets = builder(seeded)
    buckets.incremental_sweep(ORG)
    before = snapshot(seeded)
    assert buckets.rebuild(ORG) == 4
    assert snapshot(seeded) == before
    assert seeded.get_watermark(ORG) == NOW


def test_backfill_replaces_stale_buckets(seeded):
    buckets = builder(seeded)
    seeded.replace_daily_bucket(
        ORG, "carol", date(2025, 11, 25), DailyBucket(ORG, "carol", "eng", date(2025, 11, 25), 3, 3)
    )
    assert buckets.backfill(ORG, date(2025, 11, 22), date(2025, 11, 27)) == 2
    assert [(b.user_id, b.bucket_date) for b in seeded.list_daily_buckets(ORG)] == [
        ("alice", date(2025, 11, 27)),
    ]


def test_compliance_totals(seeded):
    buckets = builder(seeded)
    buckets.rebuild(ORG)
    totals = buckets.compliance_totals(ORG, date(2025, 11, 22), date(2025, 11, 28))
    assert totals["checkin_total"] == 2
    assert totals["checkin_on_time"] == 1
    assert totals["checkin_on_time_rate"] == 50
    assert totals["review_total"] == 1
    assert totals["review_on_time_rate"] == 100
    assert buckets.compliance_totals(ORG, team_id="eng")["checkin_total"] == 2
    assert buckets.compliance_totals(ORG, user_id="bob")["checkin_on_time_rate"] == 0
    empty = buckets.compliance_totals(ORG, date(2025, 11, 28) + timedelta(days=1))
    assert (empty["checkin_total"], empty["checkin_on_time_rate"]) == (0, 0)


def test_resubmitted_checkin_matches_rebuild(seeded):
    buckets = builder(seeded)
    buckets.incremental_sweep(ORG)
    seeded.record_checkin(CheckIn("c-alice", "alice", ORG, WEEK, central(2025, 11, 28, 19), True, mood=4))
    buckets.incremental_sweep(ORG, now=central(2025, 11, 28, 20))
    incremental = snapshot(seeded)
    assert ("alice", date(2025, 11, 28), 1, 0, 0, 0) in incremental
    assert all(row[:2] != ("alice", date(2025, 11, 27)) for row in incremental)

    buckets.rebuild(ORG, now=central(2025, 11, 28, 20))
    assert snapshot(seeded) == incremental
    assert buckets.compliance_totals(ORG, user_id="alice")["checkin_total"] == 1


def test_redated_review_matches_rebuild(seeded):
    buckets = builder(seeded)
    buckets.incremental_sweep(ORG)
    seeded.record_review(Review("c-alice", "mgr", central(2025, 11, 29, 10)))
    buckets.incremental_sweep(ORG, now=central(2025, 11, 29, 11))
    incremental = snapshot(seeded)
    assert ("mgr", date(2025, 11, 29), 0, 0, 1, 0) in incremental
    assert all(row[:2] != ("mgr", date(2025, 11, 28)) for row in incremental)

    buckets.rebuild(ORG, now=central(2025, 11, 29, 11))
    assert snapshot(seeded) == incremental


def test_misaligned_week_is_left_out_with_a_warning(seeded, caplog):
    buckets = builder(seeded)
    seeded.record_checkin(CheckIn("c-carol", "carol", ORG, "2025-11-24", central(2025, 11, 27, 9), True))
    with caplog.at_level(logging.WARNING):
        assert buckets.incremental_sweep(ORG) == 5
    assert "c-carol" in caplog.text
    assert seeded.list_daily_buckets(ORG, user_id="carol") == []
    assert seeded.get_watermark(ORG) == central(2025, 11, 28, 17, 30)
