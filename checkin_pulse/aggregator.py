"""Team and organization compliance rollups built from raw records."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Callable, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .civil import shift_weeks
from .classifier import classify_week, week_reference
from .errors import MalformedRecord
from .models import (
    CheckIn,
    ComplianceSnapshot,
    ComplianceStatus,
    Review,
    ScheduleConfig,
    User,
    UserFilter,
    WeekAggregate,
)
from .schedule import current_week_id
from .storage import ComplianceStore

logger = logging.getLogger(__name__)

DEFAULT_STREAK_LOOKBACK_WEEKS = 104


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rate_percent(numerator: int, denominator: int) -> int:
    """Whole-number percentage rounded half up; 0 when ``denominator`` is 0."""

    if denominator <= 0:
        return 0
    return (200 * numerator + denominator) // (2 * denominator)


def classify_user(
    user: User,
    week_id: str,
    config: ScheduleConfig,
    now: datetime,
    *,
    checkins: Sequence[CheckIn] = (),
    reviews: Optional[Mapping[str, Review]] = None,
    vacation_weeks: Collection[str] = (),
    exemptions: Optional[Mapping[str, Optional[str]]] = None,
) -> ComplianceSnapshot:
    """Pick the user's record for ``week_id`` out of ``checkins`` and classify it."""

    matching = [checkin for checkin in checkins if checkin.week_id == week_id]
    if len(matching) > 1:
        raise MalformedRecord(user.id, f"{len(matching)} check-ins recorded for week {week_id}")
    checkin = matching[0] if matching else None
    review = reviews.get(checkin.id) if checkin is not None and reviews else None
    return classify_week(
        user,
        week_id,
        config,
        now,
        checkin=checkin,
        review=review,
        on_vacation=week_id in vacation_weeks,
        exemptions=exemptions,
    )


def summarize(
    week_id: str,
    snapshots: Iterable[ComplianceSnapshot],
    moods: Iterable[int] = (),
    skipped_user_ids: Iterable[str] = (),
) -> WeekAggregate:
    """Reduce per-user snapshots into a :class:`WeekAggregate`.

    Call only once every per-user result has been collected.
    """

    ordered = sorted(snapshots, key=lambda snapshot: snapshot.user_id)
    counts = Counter(snapshot.status for snapshot in ordered)
    submitted = counts[ComplianceStatus.SUBMITTED]
    on_vacation = counts[ComplianceStatus.ON_VACATION]
    exempted = counts[ComplianceStatus.EXEMPTED]
    expected = len(ordered) - on_vacation - exempted

    on_time = sum(1 for snapshot in ordered if snapshot.submitted_on_time)
    reviews_due = [snapshot.reviewed_on_time for snapshot in ordered if snapshot.reviewed_on_time is not None]

    mood_values = sorted(moods)
    average_mood = round(sum(mood_values) / len(mood_values), 2) if mood_values else None

    return WeekAggregate(
        week_id=week_id,
        total_users=len(ordered),
        submitted=submitted,
        expected=expected,
        on_vacation=on_vacation,
        exempted=exempted,
        overdue=counts[ComplianceStatus.OVERDUE],
        missing=counts[ComplianceStatus.MISSING],
        submission_rate=rate_percent(submitted, expected),
        on_time_rate=rate_percent(on_time, submitted),
        review_rate=rate_percent(sum(reviews_due), len(reviews_due)),
        average_mood=average_mood,
        skipped_user_ids=tuple(sorted(set(skipped_user_ids))),
    )


class ComplianceAggregator:
    """Read-only compliance queries over a :class:`ComplianceStore`."""

    def __init__(self, store: ComplianceStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    # region Users
    def _resolve_users(self, org_id: str, user_filter: Optional[UserFilter]) -> Tuple[List[User], List[str]]:
        users = self.store.list_users(org_id, user_filter)
        missing: List[str] = []
        if user_filter is not None and user_filter.user_ids is not None:
            found = {user.id for user in users}
            missing = sorted(set(user_filter.user_ids) - found)
            for user_id in missing:
                logger.warning("Skipping unknown user %s in organization %s", user_id, org_id)
        return sorted(users, key=lambda user: user.id), missing

    def _get_user(self, org_id: str, user_id: str) -> User:
        users = self.store.list_users(org_id, UserFilter(user_ids=(user_id,)))
        if not users:
            raise KeyError(f"unknown user {user_id} in organization {org_id}")
        return users[0]

    # endregion

    # region Weekly rollups
    def aggregate(
        self,
        org_id: str,
        week_id: str,
        user_filter: Optional[UserFilter] = None,
        now: Optional[datetime] = None,
    ) -> WeekAggregate:
        """Roll up every selected user's status for ``week_id``.

        Users whose records cannot be classified are skipped with a warning
        and reported in ``skipped_user_ids``.
        """

        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        week_reference(week_id, config)
        users, skipped = self._resolve_users(org_id, user_filter)

        checkins_by_user: Dict[str, List[CheckIn]] = defaultdict(list)
        week_checkins = self.store.list_checkins(org_id, week_id=week_id)
        for checkin in week_checkins:
            checkins_by_user[checkin.user_id].append(checkin)
        reviews = {review.checkin_id: review for review in self.store.list_reviews([c.id for c in week_checkins])}
        vacation_users = {vacation.user_id for vacation in self.store.list_vacations(org_id, week_id=week_id)}
        exemptions: Dict[str, Dict[str, Optional[str]]] = defaultdict(dict)
        for exemption in self.store.list_exemptions(org_id, week_id=week_id):
            exemptions[exemption.user_id][exemption.week_id] = exemption.reason

        snapshots: List[ComplianceSnapshot] = []
        moods: List[int] = []
        for user in users:
            user_checkins = checkins_by_user.get(user.id, [])
            try:
                snapshot = classify_user(
                    user,
                    week_id,
                    config,
                    now,
                    checkins=user_checkins,
                    reviews=reviews,
                    vacation_weeks={week_id} if user.id in vacation_users else (),
                    exemptions=exemptions.get(user.id),
                )
            except MalformedRecord as exc:
                logger.warning("Skipping user %s for week %s: %s", user.id, week_id, exc.reason)
                skipped.append(user.id)
                continue
            snapshots.append(snapshot)
            if snapshot.status is ComplianceStatus.SUBMITTED and user_checkins[0].mood is not None:
                moods.append(user_checkins[0].mood)

        return summarize(week_id, snapshots, moods, skipped)

    def historical_series(
        self,
        org_id: str,
        week_count: int,
        user_filter: Optional[UserFilter] = None,
        now: Optional[datetime] = None,
    ) -> List[WeekAggregate]:
        """Return ``week_count`` weekly rollups, oldest first, ending at the current week."""

        if week_count < 1:
            return []
        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        current = current_week_id(now, config)
        return [
            self.aggregate(org_id, shift_weeks(current, -offset), user_filter, now)
            for offset in range(week_count - 1, -1, -1)
        ]

    # endregion

    # region Individuals
    def user_status(
        self,
        org_id: str,
        user_id: str,
        week_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceSnapshot:
        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        user = self._get_user(org_id, user_id)
        week_id = week_id or current_week_id(now, config)
        checkins = self.store.list_checkins(org_id, user_id=user_id, week_id=week_id)
        reviews = {review.checkin_id: review for review in self.store.list_reviews([c.id for c in checkins])}
        vacations = {vacation.week_id for vacation in self.store.list_vacations(org_id, user_id, week_id)}
        exemptions = {e.week_id: e.reason for e in self.store.list_exemptions(org_id, user_id, week_id)}
        return classify_user(
            user,
            week_id,
            config,
            now,
            checkins=checkins,
            reviews=reviews,
            vacation_weeks=vacations,
            exemptions=exemptions,
        )

    def streak(
        self,
        org_id: str,
        user_id: str,
        now: Optional[datetime] = None,
        max_weeks: int = DEFAULT_STREAK_LOOKBACK_WEEKS,
    ) -> int:
        """Count consecutive submitted weeks, most recent first.

        Missing or overdue weeks end the streak; vacation and exempted weeks
        are passed over, and so is a week whose records are malformed (with a
        warning). The current week only counts once it is submitted or
        overdue, so a week that is not yet due never resets a streak.
        """

        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        user = self._get_user(org_id, user_id)

        checkins_by_week: Dict[str, List[CheckIn]] = defaultdict(list)
        for checkin in self.store.list_checkins(org_id, user_id=user_id):
            checkins_by_week[checkin.week_id].append(checkin)
        if not checkins_by_week:
            return 0
        earliest = min(checkins_by_week)
        vacations = {vacation.week_id for vacation in self.store.list_vacations(org_id, user_id)}
        exemptions = {e.week_id: e.reason for e in self.store.list_exemptions(org_id, user_id)}

        current = current_week_id(now, config)
        week_id = current
        streak = 0
        for _ in range(max_weeks):
            if week_id < earliest:
                break
            try:
                status = classify_user(
                    user,
                    week_id,
                    config,
                    now,
                    checkins=checkins_by_week.get(week_id, []),
                    vacation_weeks=vacations,
                    exemptions=exemptions,
                ).status
            except MalformedRecord as exc:
                logger.warning("Passing over week %s in streak for user %s: %s", week_id, user_id, exc.reason)
                week_id = shift_weeks(week_id, -1)
                continue
            if status is ComplianceStatus.SUBMITTED:
                streak += 1
            elif status is ComplianceStatus.OVERDUE:
                break
            elif status is ComplianceStatus.MISSING and week_id != current:
                break
            week_id = shift_weeks(week_id, -1)
        return streak

    # endregion


__all__ = [
    "ComplianceAggregator",
    "DEFAULT_STREAK_LOOKBACK_WEEKS",
    "classify_user",
    "rate_percent",
    "summarize",
    "utcnow",
]
