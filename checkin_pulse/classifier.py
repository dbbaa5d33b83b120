"""Per-user weekly compliance classification."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Mapping, Optional

from .errors import MalformedRecord
from .models import CheckIn, ComplianceSnapshot, ComplianceStatus, Review, ScheduleConfig, User
from .schedule import (
    compute_due_instant,
    compute_review_due_instant,
    compute_week_id,
    current_week_id,
    is_reviewed_on_time,
    is_submitted_on_time,
)

ADMIN_EXEMPTION = "admin exemption"
INACTIVE = "inactive"
NO_MANAGER = "no manager"

_ONE_DAY = timedelta(days=1)


def exemption_reason(
    user: User,
    week_id: str,
    exemptions: Optional[Mapping[str, Optional[str]]] = None,
) -> Optional[str]:
    """Return why ``user`` is exempt from checking in for ``week_id``, if they are.

    ``exemptions`` maps week identifiers to the reason an admin recorded.
    Inactive users and users without a manager are exempt every week.
    """

    if exemptions and week_id in exemptions:
        return exemptions[week_id] or ADMIN_EXEMPTION
    if not user.is_active:
        return INACTIVE
    if not user.manager_id:
        return NO_MANAGER
    return None


def week_reference(week_id: str, config: ScheduleConfig) -> date:
    """Return the week-start date for ``week_id``, checking it is canonical."""

    try:
        day = date.fromisoformat(week_id)
    except (TypeError, ValueError):
        raise ValueError(f"week id {week_id!r} is not an ISO date") from None
    if compute_week_id(day, config) != week_id:
        raise ValueError(f"week id {week_id} does not start on weekday {config.week_start_day}")
    return day


def _review_timeliness(review: Optional[Review], review_due: datetime, now: datetime) -> Optional[bool]:
    if review is None or review.reviewed_at is None:
        return False if now > review_due else None
    return is_reviewed_on_time(review.reviewed_at, review_due)


def classify_week(
    user: User,
    week_id: str,
    config: ScheduleConfig,
    now: datetime,
    *,
    checkin: Optional[CheckIn] = None,
    review: Optional[Review] = None,
    on_vacation: bool = False,
    exemptions: Optional[Mapping[str, Optional[str]]] = None,
) -> ComplianceSnapshot:
    """Classify one user's week; the first matching rule wins.

    1. vacation, 2. exemption, 3. complete check-in, 4. past due in the
    current week (overdue), 5. anything else (missing). Past weeks without
    a submission stay ``missing``; only the current week can be overdue.
    """

    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    due = compute_due_instant(week_reference(week_id, config), config)

    if checkin is not None and (checkin.user_id != user.id or checkin.week_id != week_id):
        raise MalformedRecord(user.id, f"check-in {checkin.id} belongs to another user or week")

    if on_vacation:
        return ComplianceSnapshot(user.id, week_id, ComplianceStatus.ON_VACATION, due)

    reason = exemption_reason(user, week_id, exemptions)
    if reason:
        return ComplianceSnapshot(user.id, week_id, ComplianceStatus.EXEMPTED, due, exemption_reason=reason)

    if checkin is not None and checkin.is_complete:
        if checkin.submitted_at is None:
            raise MalformedRecord(user.id, f"complete check-in {checkin.id} has no submission time")
        review_due = compute_review_due_instant(week_reference(week_id, config), config)
        return ComplianceSnapshot(
            user.id,
            week_id,
            ComplianceStatus.SUBMITTED,
            due,
            submitted_on_time=is_submitted_on_time(checkin.submitted_at, due),
            reviewed_on_time=_review_timeliness(review, review_due, now),
        )

    if now > due and week_id == current_week_id(now, config):
        return ComplianceSnapshot(
            user.id,
            week_id,
            ComplianceStatus.OVERDUE,
            due,
            days_overdue=(now - due) // _ONE_DAY,
        )

    return ComplianceSnapshot(user.id, week_id, ComplianceStatus.MISSING, due)


__all__ = [
    "ADMIN_EXEMPTION",
    "INACTIVE",
    "NO_MANAGER",
    "exemption_reason",
    "week_reference",
    "classify_week",
]
