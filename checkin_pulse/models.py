"""Dataclasses representing check-in compliance domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from .errors import PartialAggregationFailure


class ComplianceStatus(str, Enum):
    SUBMITTED = "submitted"
    MISSING = "missing"
    OVERDUE = "overdue"
    ON_VACATION = "on-vacation"
    EXEMPTED = "exempted"


@dataclass(slots=True, frozen=True)
class ScheduleConfig:
    """An organization's check-in schedule.

    Weekdays use 0 = Sunday through 6 = Saturday. Times are ``HH:MM`` in the
    organization's timezone. Unset reminder and review days fall back to the
    due day; an unset review time falls back to the due time.
    """

    due_weekday: int = 5
    due_time: str = "17:00"
    reminder_weekday: Optional[int] = None
    reminder_time: str = "09:00"
    timezone: str = "America/Chicago"
    week_start_day: int = 6
    review_weekday: Optional[int] = None
    review_time: Optional[str] = None

    @property
    def effective_reminder_weekday(self) -> int:
        return self.due_weekday if self.reminder_weekday is None else self.reminder_weekday

    @property
    def effective_review_weekday(self) -> int:
        return self.due_weekday if self.review_weekday is None else self.review_weekday

    @property
    def effective_review_time(self) -> str:
        return self.review_time or self.due_time


@dataclass(slots=True)
class User:
    id: str
    organization_id: str
    name: str
    team_id: str | None = None
    manager_id: str | None = None
    is_active: bool = True


@dataclass(slots=True)
class CheckIn:
    id: str
    user_id: str
    organization_id: str
    week_id: str
    submitted_at: datetime | None
    is_complete: bool
    mood: int | None = None


@dataclass(slots=True)
class Review:
    checkin_id: str
    reviewed_by: str | None
    reviewed_at: datetime | None


@dataclass(slots=True)
class Vacation:
    user_id: str
    organization_id: str
    week_id: str
    note: str | None = None


@dataclass(slots=True)
class Exemption:
    user_id: str
    organization_id: str
    week_id: str
    reason: str | None = None


@dataclass(slots=True)
class UserFilter:
    """Selects the users an aggregation covers."""

    team_id: str | None = None
    user_ids: Tuple[str, ...] | None = None
    active_only: bool = False


@dataclass(slots=True, frozen=True)
class ComplianceSnapshot:
    user_id: str
    week_id: str
    status: ComplianceStatus
    due_instant: datetime
    submitted_on_time: bool = False
    reviewed_on_time: bool | None = None
    days_overdue: int | None = None
    exemption_reason: str | None = None


@dataclass(slots=True, frozen=True)
class WeekAggregate:
    """Team or organization rollup for a single week."""

    week_id: str
    total_users: int
    submitted: int
    expected: int
    on_vacation: int
    exempted: int
    overdue: int
    missing: int
    submission_rate: int
    on_time_rate: int
    review_rate: int
    average_mood: float | None
    skipped_user_ids: Tuple[str, ...] = ()

    def raise_for_skipped(self) -> None:
        """Raise :class:`PartialAggregationFailure` if any user was skipped."""

        if self.skipped_user_ids:
            raise PartialAggregationFailure(self.week_id, self.skipped_user_ids)


@dataclass(slots=True, frozen=True)
class ReminderTask:
    user_id: str
    week_id: str
    channel: str
    due_instant: datetime


@dataclass(slots=True)
class DailyBucket:
    org_id: str
    user_id: str
    team_id: str | None
    bucket_date: date
    checkin_compliance_count: int = 0
    checkin_on_time_count: int = 0
    review_compliance_count: int = 0
    review_on_time_count: int = 0


__all__ = [
    "ComplianceStatus",
    "ScheduleConfig",
    "User",
    "CheckIn",
    "Review",
    "Vacation",
    "Exemption",
    "UserFilter",
    "ComplianceSnapshot",
    "WeekAggregate",
    "ReminderTask",
    "DailyBucket",
]
