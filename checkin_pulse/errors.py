"""Exception types raised by the check-in compliance engine."""

from __future__ import annotations

from typing import Iterable, Tuple


class InvalidScheduleConfig(ValueError):
    """Raised when an organization's schedule settings cannot be used."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid schedule setting {field}={value!r}: {reason}")
        self.field = field
        self.value = value
        self.reason = reason


class LocalTimeResolution(Exception):
    """Base for DST edge cases that the timezone resolver settles by policy.

    These are never raised to callers. They describe how a civil time was
    resolved so the decision can be logged and inspected in tests.
    """

    def __init__(self, civil: object, zone: str, resolved: object) -> None:
        super().__init__(f"{civil} in {zone} resolved to {resolved}")
        self.civil = civil
        self.zone = zone
        self.resolved = resolved


class NonexistentLocalTime(LocalTimeResolution):
    """Civil time falls inside the spring-forward gap."""


class AmbiguousLocalTime(LocalTimeResolution):
    """Civil time occurs twice because of the fall-back transition."""


class MalformedRecord(ValueError):
    """Raised when source records for a user cannot be classified."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Malformed records for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class PartialAggregationFailure(RuntimeError):
    """Raised on request when an aggregation had to skip some users."""

    def __init__(self, week_id: str, skipped_user_ids: Iterable[str]) -> None:
        self.week_id = week_id
        self.skipped_user_ids: Tuple[str, ...] = tuple(skipped_user_ids)
        super().__init__(
            f"Aggregation for week {week_id} skipped {len(self.skipped_user_ids)} user(s): "
            + ", ".join(self.skipped_user_ids)
        )


__all__ = [
    "InvalidScheduleConfig",
    "LocalTimeResolution",
    "NonexistentLocalTime",
    "AmbiguousLocalTime",
    "MalformedRecord",
    "PartialAggregationFailure",
]
