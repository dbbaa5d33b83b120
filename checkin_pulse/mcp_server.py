"""MCP server exposing check-in compliance queries as tools."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .aggregator import ComplianceAggregator
from .buckets import DailyBucketBuilder
from .config import load_settings
from .db import Database
from .ledger import ReminderLedger
from .models import ComplianceSnapshot, UserFilter, WeekAggregate
from .schedule import (
    compute_due_instant,
    compute_reminder_instant,
    compute_review_due_instant,
    compute_week_id,
    due_date_label,
    week_ending_label,
)

mcp = FastMCP("checkin-pulse")

_settings = load_settings()
_database = Database(_settings.database_path)
_aggregator = ComplianceAggregator(_database)
_buckets = DailyBucketBuilder(_database, _database)
_ledger = ReminderLedger(_database, _settings.reminder_channel)


def _ensure_date(day_str: Optional[str] = None) -> date:
    if not day_str:
        return datetime.now(timezone.utc).date()
    return datetime.strptime(day_str, "%Y-%m-%d").date()


def _week_id(org_id: str, day_str: Optional[str]) -> Optional[str]:
    if not day_str:
        return None
    return compute_week_id(_ensure_date(day_str), _database.get_organization_schedule(org_id))


def _filter(team_id: Optional[str]) -> Optional[UserFilter]:
    return UserFilter(team_id=team_id) if team_id else None


def _aggregate_dict(aggregate: WeekAggregate) -> Dict[str, Any]:
    data = asdict(aggregate)
    data["skipped_user_ids"] = list(aggregate.skipped_user_ids)
    return data


def _snapshot_dict(snapshot: ComplianceSnapshot) -> Dict[str, Any]:
    data = asdict(snapshot)
    data["status"] = snapshot.status.value
    data["due_instant"] = snapshot.due_instant.isoformat()
    return data


@mcp.tool()
async def get_week_compliance(org_id: str, date: Optional[str] = None, team_id: Optional[str] = None) -> dict:
    """Return submission and on-time rates for the week containing the date (default: this week)."""

    now = datetime.now(timezone.utc)
    config = _database.get_organization_schedule(org_id)
    week_id = compute_week_id(_ensure_date(date) if date else now, config)
    return _aggregate_dict(_aggregator.aggregate(org_id, week_id, _filter(team_id), now))


@mcp.tool()
async def get_user_status(org_id: str, user_id: str, date: Optional[str] = None) -> dict:
    """Return a user's compliance status, plus whether a reminder went out, for a week."""

    snapshot = _aggregator.user_status(org_id, user_id, _week_id(org_id, date))
    data = _snapshot_dict(snapshot)
    data["reminder_sent"] = not _ledger.should_send(user_id, snapshot.week_id)
    return data


@mcp.tool()
async def get_user_streak(org_id: str, user_id: str) -> dict:
    """Return the number of consecutive weeks the user has checked in."""

    return {"org_id": org_id, "user_id": user_id, "streak": _aggregator.streak(org_id, user_id)}


@mcp.tool()
async def get_compliance_trend(org_id: str, weeks: int = 8, team_id: Optional[str] = None) -> dict:
    """Return weekly compliance rollups, oldest first, ending with the current week."""

    series = _aggregator.historical_series(org_id, weeks, _filter(team_id))
    return {"org_id": org_id, "weeks": [_aggregate_dict(item) for item in series]}


@mcp.tool()
async def get_compliance_totals(
    org_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    team_id: Optional[str] = None,
) -> dict:
    """Return check-in and review on-time totals from the daily buckets."""

    return _buckets.compliance_totals(
        org_id,
        _ensure_date(start) if start else None,
        _ensure_date(end) if end else None,
        team_id=team_id,
    )


@mcp.tool()
async def get_schedule(org_id: str, date: Optional[str] = None) -> dict:
    """Return the check-in, review and reminder deadlines for a week."""

    config = _database.get_organization_schedule(org_id)
    day = _ensure_date(date)
    return {
        "org_id": org_id,
        "week_id": compute_week_id(day, config),
        "week_label": week_ending_label(day, config),
        "due_instant": compute_due_instant(day, config).isoformat(),
        "due_label": due_date_label(day, config),
        "reminder_instant": compute_reminder_instant(day, config).isoformat(),
        "review_due_instant": compute_review_due_instant(day, config).isoformat(),
    }


__all__ = [
    "mcp",
    "get_week_compliance",
    "get_user_status",
    "get_user_streak",
    "get_compliance_trend",
    "get_compliance_totals",
    "get_schedule",
]
