"""Conversion between organization wall-clock time and absolute instants.

Only the United States daylight-saving rule is modelled: daylight time
starts on the second Sunday of March at 02:00 local standard time and ends
on the first Sunday of November at 02:00 local daylight time. Transition
dates are derived from the calendar for every year, not looked up.

Transition policy:

* a civil time inside the spring-forward gap resolves to the first valid
  instant after the gap (03:00 daylight time);
* a civil time inside the fall-back overlap resolves with the standard-time
  offset that applies after the transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Tuple

from .civil import nth_sunday
from .errors import AmbiguousLocalTime, InvalidScheduleConfig, NonexistentLocalTime

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Chicago"

_DST_SHIFT = timedelta(hours=1)
_TRANSITION_CLOCK = time(2, 0)


@dataclass(slots=True, frozen=True)
class ZoneRule:
    name: str
    standard_offset: timedelta
    standard_abbr: str
    daylight_abbr: str

    @property
    def daylight_offset(self) -> timedelta:
        return self.standard_offset + _DST_SHIFT

    def transitions(self, year: int) -> Tuple[datetime, datetime]:
        """Return the local civil start and end of daylight time for ``year``."""

        start = datetime.combine(nth_sunday(year, 3, 2), _TRANSITION_CLOCK)
        end = datetime.combine(nth_sunday(year, 11, 1), _TRANSITION_CLOCK)
        return start, end


def _rule(name: str, hours: int, standard: str, daylight: str) -> ZoneRule:
    return ZoneRule(name, timedelta(hours=hours), standard, daylight)


_CENTRAL = _rule("America/Chicago", -6, "CST", "CDT")
_EASTERN = _rule("America/New_York", -5, "EST", "EDT")
_MOUNTAIN = _rule("America/Denver", -7, "MST", "MDT")
_PACIFIC = _rule("America/Los_Angeles", -8, "PST", "PDT")

ZONE_RULES: Dict[str, ZoneRule] = {
    "America/Chicago": _CENTRAL,
    "US/Central": _CENTRAL,
    "America/New_York": _EASTERN,
    "US/Eastern": _EASTERN,
    "America/Denver": _MOUNTAIN,
    "US/Mountain": _MOUNTAIN,
    "America/Los_Angeles": _PACIFIC,
    "US/Pacific": _PACIFIC,
}


def get_zone_rule(zone: str) -> ZoneRule:
    try:
        return ZONE_RULES[zone]
    except (KeyError, TypeError):
        raise InvalidScheduleConfig(
            "timezone", zone, "only US zones following the US daylight-saving rule are supported"
        ) from None


def _require_naive(value: datetime) -> None:
    if value.tzinfo is not None:
        raise ValueError("expected a civil (naive) datetime, got an aware one")


def is_dst(civil: date | datetime, zone: str = DEFAULT_TIMEZONE) -> bool:
    """Return whether a civil date or datetime falls in daylight time.

    A bare ``date`` is judged at local noon, so the March transition day
    counts as daylight time and the November one as standard time. Civil
    times in the transition windows follow the module's resolution policy.
    """

    rule = get_zone_rule(zone)
    if not isinstance(civil, datetime):
        civil = datetime.combine(civil, time(12, 0))
    _require_naive(civil)
    start, end = rule.transitions(civil.year)
    return start <= civil < end - _DST_SHIFT


def civil_to_instant(civil: datetime, zone: str = DEFAULT_TIMEZONE) -> datetime:
    """Resolve a wall-clock time in ``zone`` to an aware UTC datetime."""

    rule = get_zone_rule(zone)
    _require_naive(civil)
    start, end = rule.transitions(civil.year)

    if start <= civil < start + _DST_SHIFT:
        resolved = (start + _DST_SHIFT - rule.daylight_offset).replace(tzinfo=timezone.utc)
        logger.debug("%s", NonexistentLocalTime(civil, rule.name, resolved))
        return resolved

    if end - _DST_SHIFT <= civil < end:
        resolved = (civil - rule.standard_offset).replace(tzinfo=timezone.utc)
        logger.debug("%s", AmbiguousLocalTime(civil, rule.name, resolved))
        return resolved

    offset = rule.daylight_offset if is_dst(civil, zone) else rule.standard_offset
    return (civil - offset).replace(tzinfo=timezone.utc)


def instant_to_civil(instant: datetime, zone: str = DEFAULT_TIMEZONE) -> datetime:
    """Express an aware instant as wall-clock time in ``zone``.

    The result carries a fixed-offset tzinfo named with the zone
    abbreviation in effect (for example ``CDT``).
    """

    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    rule = get_zone_rule(zone)
    utc = instant.astimezone(timezone.utc).replace(tzinfo=None)
    start, end = rule.transitions(utc.year)
    if start - rule.standard_offset <= utc < end - rule.daylight_offset:
        offset, abbr = rule.daylight_offset, rule.daylight_abbr
    else:
        offset, abbr = rule.standard_offset, rule.standard_abbr
    return (utc + offset).replace(tzinfo=timezone(offset, abbr))


__all__ = [
    "DEFAULT_TIMEZONE",
    "ZONE_RULES",
    "ZoneRule",
    "get_zone_rule",
    "is_dst",
    "civil_to_instant",
    "instant_to_civil",
]
