"""Materialized daily compliance buckets.

Buckets are summaries, never the system of record: every write deletes the
stored row for a user-day and recomputes it from check-ins, reviews and
vacations, so any bucket (or the whole table) can be rebuilt at any time.
The watermark only remembers how far the incremental sweep has advanced.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .aggregator import rate_percent, utcnow
from .classifier import week_reference
from .db import Database
from .models import DailyBucket, ScheduleConfig, UserFilter
from .schedule import (
    civil_date,
    compute_due_instant,
    compute_review_due_instant,
    is_reviewed_on_time,
    is_submitted_on_time,
)
from .storage import ComplianceStore

logger = logging.getLogger(__name__)

INITIAL_LOOKBACK = timedelta(days=7)

UserDay = Tuple[str, date]


def _week_reference_or_none(week_id: str, config: ScheduleConfig, checkin_id: str) -> Optional[date]:
    try:
        return week_reference(week_id, config)
    except ValueError as exc:
        logger.warning("Leaving check-in %s out of daily buckets: %s", checkin_id, exc)
        return None


class DailyBucketBuilder:
    """Keeps ``compliance_metrics_daily`` in step with the raw records."""

    def __init__(
        self,
        store: ComplianceStore,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
        initial_lookback: timedelta = INITIAL_LOOKBACK,
    ) -> None:
        self.store = store
        self.database = database
        self.clock = clock
        self.initial_lookback = initial_lookback

    # region Single user-day
    def compute_user_day(
        self,
        org_id: str,
        user_id: str,
        bucket_date: date,
        config: Optional[ScheduleConfig] = None,
    ) -> Optional[DailyBucket]:
        """Build the bucket for one user-day, or ``None`` when there is nothing to count.

        Check-in counts cover the user's complete check-ins submitted that
        day; review counts cover reviews the user completed that day. Weeks
        the user spent on vacation are left out of both.
        """

        config = config or self.store.get_organization_schedule(org_id)
        users = self.store.list_users(org_id, UserFilter(user_ids=(user_id,)))
        team_id = users[0].team_id if users else None
        vacation_weeks = {vacation.week_id for vacation in self.store.list_vacations(org_id, user_id)}

        bucket = DailyBucket(org_id=org_id, user_id=user_id, team_id=team_id, bucket_date=bucket_date)
        for checkin in self.store.list_checkins(org_id, user_id=user_id):
            if not checkin.is_complete or checkin.submitted_at is None:
                continue
            if civil_date(checkin.submitted_at, config) != bucket_date or checkin.week_id in vacation_weeks:
                continue
            reference = _week_reference_or_none(checkin.week_id, config, checkin.id)
            if reference is None:
                continue
            due = compute_due_instant(reference, config)
            bucket.checkin_compliance_count += 1
            bucket.checkin_on_time_count += int(is_submitted_on_time(checkin.submitted_at, due))

        org_checkins = {checkin.id: checkin for checkin in self.store.list_checkins(org_id)}
        for review in self.store.list_reviews(org_checkins):
            if review.reviewed_by != user_id or review.reviewed_at is None:
                continue
            checkin = org_checkins[review.checkin_id]
            if civil_date(review.reviewed_at, config) != bucket_date or checkin.week_id in vacation_weeks:
                continue
            reference = _week_reference_or_none(checkin.week_id, config, checkin.id)
            if reference is None:
                continue
            review_due = compute_review_due_instant(reference, config)
            bucket.review_compliance_count += 1
            bucket.review_on_time_count += int(is_reviewed_on_time(review.reviewed_at, review_due))

        if bucket.checkin_compliance_count == 0 and bucket.review_compliance_count == 0:
            return None
        return bucket

    def recompute_user_day(self, org_id: str, user_id: str, bucket_date: date) -> Optional[DailyBucket]:
        bucket = self.compute_user_day(org_id, user_id, bucket_date)
        self.database.replace_daily_bucket(org_id, user_id, bucket_date, bucket)
        return bucket

    # endregion

    # region Sweeps
    def _event_targets(
        self,
        org_id: str,
        config: ScheduleConfig,
        since: Optional[datetime] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Tuple[Set[UserDay], Optional[datetime], Dict[Optional[str], date]]:
        """Collect user-days with events in the window.

        Also returns, per user, the earliest week start among the changed
        check-ins. Changed reviews are keyed under ``None`` since a review
        may have moved between reviewers.
        """

        targets: Set[UserDay] = set()
        latest: Optional[datetime] = None
        touched: Dict[Optional[str], date] = {}

        def consider(user_id: Optional[str], instant: Optional[datetime]) -> bool:
            nonlocal latest
            if not user_id or instant is None:
                return False
            if since is not None and instant < since:
                return False
            day = civil_date(instant, config)
            if (start is not None and day < start) or (end is not None and day > end):
                return False
            targets.add((user_id, day))
            latest = instant if latest is None or instant > latest else latest
            return True

        def touch(key: Optional[str], week_id: str) -> None:
            try:
                week_start = date.fromisoformat(week_id)
            except ValueError:
                return
            if key not in touched or week_start < touched[key]:
                touched[key] = week_start

        checkins = self.store.list_checkins(org_id)
        for checkin in checkins:
            if checkin.is_complete and consider(checkin.user_id, checkin.submitted_at):
                touch(checkin.user_id, checkin.week_id)
        by_id = {checkin.id: checkin for checkin in checkins}
        for review in self.store.list_reviews(by_id):
            if consider(review.reviewed_by, review.reviewed_at):
                touch(None, by_id[review.checkin_id].week_id)
        return targets, latest, touched

    def _stored_days_since(self, org_id: str, touched: Dict[Optional[str], date]) -> Set[UserDay]:
        """Stored user-days a changed record may have moved away from."""

        days: Set[UserDay] = set()
        for user_id, week_start in touched.items():
            for bucket in self.database.list_daily_buckets(org_id, week_start, user_id=user_id):
                if user_id is not None or bucket.review_compliance_count:
                    days.add((bucket.user_id, bucket.bucket_date))
        return days

    def _recompute_all(self, org_id: str, targets: Set[UserDay]) -> int:
        for user_id, bucket_date in sorted(targets):
            self.recompute_user_day(org_id, user_id, bucket_date)
        return len(targets)

    def incremental_sweep(self, org_id: str, now: Optional[datetime] = None) -> int:
        """Recompute user-days touched since the watermark and advance it.

        A missing watermark starts the sweep ``initial_lookback`` before
        ``now``. Stored buckets of the affected users dated from the changed
        record's week onward are recomputed too, so a resubmitted check-in
        or a re-dated review does not leave its old day counted. Returns the
        number of user-days recomputed.
        """

        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        watermark = self.database.get_watermark(org_id) or now - self.initial_lookback
        targets, latest, touched = self._event_targets(org_id, config, since=watermark)
        targets |= self._stored_days_since(org_id, touched)
        processed = self._recompute_all(org_id, targets)
        self.database.set_watermark(org_id, latest or now)
        logger.info("Recomputed %d user-day bucket(s) for organization %s", processed, org_id)
        return processed

    def backfill(self, org_id: str, start: date, end: date) -> int:
        """Rebuild every bucket dated ``start`` through ``end`` inclusive."""

        config = self.store.get_organization_schedule(org_id)
        targets, _, _ = self._event_targets(org_id, config, start=start, end=end)
        stale = {
            (bucket.user_id, bucket.bucket_date)
            for bucket in self.database.list_daily_buckets(org_id, start, end)
        }
        for user_id, bucket_date in sorted(stale - targets):
            self.database.replace_daily_bucket(org_id, user_id, bucket_date, None)
        processed = self._recompute_all(org_id, targets)
        logger.info("Backfilled %d user-day bucket(s) for organization %s (%s to %s)", processed, org_id, start, end)
        return processed

    def rebuild(self, org_id: str, now: Optional[datetime] = None) -> int:
        """Drop all buckets and the watermark for ``org_id`` and rebuild from source."""

        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        self.database.clear_daily_buckets(org_id)
        self.database.clear_watermark(org_id)
        targets, _, _ = self._event_targets(org_id, config)
        processed = self._recompute_all(org_id, targets)
        self.database.set_watermark(org_id, now)
        return processed

    # endregion

    # region Reads
    def compliance_totals(
        self,
        org_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        team_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        buckets: List[DailyBucket] = self.database.list_daily_buckets(
            org_id, start, end, team_id=team_id, user_id=user_id
        )
        checkin_total = sum(bucket.checkin_compliance_count for bucket in buckets)
        checkin_on_time = sum(bucket.checkin_on_time_count for bucket in buckets)
        review_total = sum(bucket.review_compliance_count for bucket in buckets)
        review_on_time = sum(bucket.review_on_time_count for bucket in buckets)
        return {
            "org_id": org_id,
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "checkin_total": checkin_total,
            "checkin_on_time": checkin_on_time,
            "checkin_on_time_rate": rate_percent(checkin_on_time, checkin_total),
            "review_total": review_total,
            "review_on_time": review_on_time,
            "review_on_time_rate": rate_percent(review_on_time, review_total),
        }

    # endregion


__all__ = ["DailyBucketBuilder", "INITIAL_LOOKBACK"]
