"""SQLite persistence layer for Check-in Pulse.

Raw records (organizations, users, check-ins, reviews, vacations,
exemptions) are owned by the surrounding application; the write helpers for
them exist so that application, fixtures and tests can populate a store.
The engine itself writes only the reminder ledger, the daily compliance
buckets and the aggregation watermarks.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .models import CheckIn, DailyBucket, Exemption, Review, ScheduleConfig, User, UserFilter, Vacation
from .schedule import schedule_config_from_mapping, validate_schedule_config

Connection = sqlite3.Connection
Row = sqlite3.Row

_IN_CLAUSE_CHUNK = 500


def dump_instant(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError("instants must be timezone-aware before they are stored")
    return value.astimezone(timezone.utc).isoformat()


def load_instant(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Lightweight wrapper around SQLite operations."""

    def __init__(self, path: Path, timeout: float = 5.0) -> None:
        self._path = path
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS organizations (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    due_weekday INTEGER,
                    due_time TEXT,
                    reminder_weekday INTEGER,
                    reminder_time TEXT,
                    timezone TEXT,
                    week_start_day INTEGER,
                    review_weekday INTEGER,
                    review_time TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    team_id TEXT,
                    manager_id TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS checkins (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    submitted_at TEXT,
                    is_complete INTEGER NOT NULL DEFAULT 0,
                    mood INTEGER,
                    UNIQUE(organization_id, user_id, week_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS reviews (
                    checkin_id TEXT PRIMARY KEY,
                    reviewed_by TEXT,
                    reviewed_at TEXT,
                    FOREIGN KEY(checkin_id) REFERENCES checkins(id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS vacations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    organization_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    note TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(organization_id, user_id, week_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS checkin_exemptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    organization_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    reason TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(organization_id, user_id, week_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS reminder_ledger (
                    user_id TEXT NOT NULL,
                    week_id TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    sent_at TEXT NOT NULL,
                    PRIMARY KEY(user_id, week_id, channel)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS compliance_metrics_daily (
                    org_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    team_id TEXT,
                    bucket_date TEXT NOT NULL,
                    checkin_compliance_count INTEGER NOT NULL DEFAULT 0,
                    checkin_on_time_count INTEGER NOT NULL DEFAULT 0,
                    review_compliance_count INTEGER NOT NULL DEFAULT 0,
                    review_on_time_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY(org_id, user_id, bucket_date)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS aggregation_watermarks (
                    org_id TEXT PRIMARY KEY,
                    last_processed_at TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    # region Organizations
    def upsert_organization(self, org_id: str, config: ScheduleConfig, name: Optional[str] = None) -> None:
        """Save an organization's schedule; invalid settings raise before anything is written."""

        validate_schedule_config(config)
        record: Dict[str, Any] = {"id": org_id, "name": name, **asdict(config)}
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO organizations (id, name, due_weekday, due_time, reminder_weekday,
                                           reminder_time, timezone, week_start_day,
                                           review_weekday, review_time)
                VALUES (:id, :name, :due_weekday, :due_time, :reminder_weekday,
                        :reminder_time, :timezone, :week_start_day,
                        :review_weekday, :review_time)
                ON CONFLICT(id) DO UPDATE SET
                    name=COALESCE(excluded.name, organizations.name),
                    due_weekday=excluded.due_weekday,
                    due_time=excluded.due_time,
                    reminder_weekday=excluded.reminder_weekday,
                    reminder_time=excluded.reminder_time,
                    timezone=excluded.timezone,
                    week_start_day=excluded.week_start_day,
                    review_weekday=excluded.review_weekday,
                    review_time=excluded.review_time
                """,
                record,
            )
            conn.commit()

    def list_organization_ids(self) -> List[str]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT id FROM organizations ORDER BY id")
            return [row["id"] for row in cursor.fetchall()]

    def get_organization_schedule(self, org_id: str) -> ScheduleConfig:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM organizations WHERE id = ?", (org_id,)).fetchone()
        if row is None:
            raise KeyError(f"unknown organization {org_id}")
        return schedule_config_from_mapping(dict(row))

    # endregion

    # region Users
    def upsert_user(self, user: User) -> None:
        record = asdict(user)
        record["is_active"] = int(user.is_active)
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, organization_id, name, team_id, manager_id, is_active)
                VALUES (:id, :organization_id, :name, :team_id, :manager_id, :is_active)
                ON CONFLICT(id) DO UPDATE SET
                    organization_id=excluded.organization_id,
                    name=excluded.name,
                    team_id=excluded.team_id,
                    manager_id=excluded.manager_id,
                    is_active=excluded.is_active
                """,
                record,
            )
            conn.commit()

    def list_users(self, org_id: str, user_filter: Optional[UserFilter] = None) -> List[User]:
        user_filter = user_filter or UserFilter()
        query = "SELECT * FROM users WHERE organization_id = ?"
        params: List[Any] = [org_id]
        if user_filter.team_id is not None:
            query += " AND team_id = ?"
            params.append(user_filter.team_id)
        if user_filter.active_only:
            query += " AND is_active = 1"
        with self.connect() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        users = [_row_to_user(row) for row in rows]
        if user_filter.user_ids is not None:
            wanted = set(user_filter.user_ids)
            users = [user for user in users if user.id in wanted]
        return users

    # endregion

    # region Check-ins
    def record_checkin(self, checkin: CheckIn) -> None:
        """Insert a check-in, or update the submission of an existing one."""

        record = asdict(checkin)
        record["submitted_at"] = dump_instant(checkin.submitted_at)
        record["is_complete"] = int(checkin.is_complete)
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO checkins (id, user_id, organization_id, week_id, submitted_at, is_complete, mood)
                VALUES (:id, :user_id, :organization_id, :week_id, :submitted_at, :is_complete, :mood)
                ON CONFLICT(organization_id, user_id, week_id) DO UPDATE SET
                    submitted_at=excluded.submitted_at,
                    is_complete=excluded.is_complete,
                    mood=excluded.mood
                """,
                record,
            )
            conn.commit()

    def list_checkins(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[CheckIn]:
        query = "SELECT * FROM checkins WHERE organization_id = ?"
        params: List[Any] = [org_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if week_id is not None:
            query += " AND week_id = ?"
            params.append(week_id)
        with self.connect() as conn:
            rows = conn.execute(query + " ORDER BY week_id, user_id", params).fetchall()
        return [_row_to_checkin(row) for row in rows]

    # endregion

    # region Reviews
    def record_review(self, review: Review) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO reviews (checkin_id, reviewed_by, reviewed_at)
                VALUES (?, ?, ?)
                ON CONFLICT(checkin_id) DO UPDATE SET
                    reviewed_by=excluded.reviewed_by,
                    reviewed_at=excluded.reviewed_at
                """,
                (review.checkin_id, review.reviewed_by, dump_instant(review.reviewed_at)),
            )
            conn.commit()

    def list_reviews(self, checkin_ids: Iterable[str]) -> List[Review]:
        ids = sorted(set(checkin_ids))
        reviews: List[Review] = []
        with self.connect() as conn:
            for offset in range(0, len(ids), _IN_CLAUSE_CHUNK):
                chunk = ids[offset : offset + _IN_CLAUSE_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"SELECT * FROM reviews WHERE checkin_id IN ({placeholders}) ORDER BY checkin_id",
                    chunk,
                )
                reviews.extend(
                    Review(row["checkin_id"], row["reviewed_by"], load_instant(row["reviewed_at"]))
                    for row in cursor.fetchall()
                )
        return reviews

    # endregion

    # region Vacations and exemptions
    def upsert_vacation(self, vacation: Vacation) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO vacations (organization_id, user_id, week_id, note)
                VALUES (:organization_id, :user_id, :week_id, :note)
                ON CONFLICT(organization_id, user_id, week_id) DO UPDATE SET
                    note=excluded.note
                """,
                asdict(vacation),
            )
            conn.commit()

    def delete_vacation(self, org_id: str, user_id: str, week_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM vacations WHERE organization_id = ? AND user_id = ? AND week_id = ?",
                (org_id, user_id, week_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def list_vacations(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[Vacation]:
        rows = self._select_weekly("vacations", org_id, user_id, week_id)
        return [Vacation(row["user_id"], row["organization_id"], row["week_id"], row["note"]) for row in rows]

    def upsert_exemption(self, exemption: Exemption) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO checkin_exemptions (organization_id, user_id, week_id, reason)
                VALUES (:organization_id, :user_id, :week_id, :reason)
                ON CONFLICT(organization_id, user_id, week_id) DO UPDATE SET
                    reason=excluded.reason
                """,
                asdict(exemption),
            )
            conn.commit()

    def delete_exemption(self, org_id: str, user_id: str, week_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM checkin_exemptions WHERE organization_id = ? AND user_id = ? AND week_id = ?",
                (org_id, user_id, week_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def list_exemptions(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[Exemption]:
        rows = self._select_weekly("checkin_exemptions", org_id, user_id, week_id)
        return [Exemption(row["user_id"], row["organization_id"], row["week_id"], row["reason"]) for row in rows]

    def _select_weekly(
        self, table: str, org_id: str, user_id: Optional[str], week_id: Optional[str]
    ) -> List[Row]:
        query = f"SELECT * FROM {table} WHERE organization_id = ?"
        params: List[Any] = [org_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if week_id is not None:
            query += " AND week_id = ?"
            params.append(week_id)
        with self.connect() as conn:
            return conn.execute(query + " ORDER BY week_id, user_id", params).fetchall()

    # endregion

    # region Reminder ledger
    def insert_ledger_entry(self, user_id: str, week_id: str, channel: str, sent_at: datetime) -> bool:
        """Insert the entry unless one exists; return whether this call inserted it."""

        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminder_ledger (user_id, week_id, channel, sent_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, week_id, channel) DO NOTHING
                """,
                (user_id, week_id, channel, dump_instant(sent_at)),
            )
            conn.commit()
            return cursor.rowcount == 1

    def get_ledger_entry(self, user_id: str, week_id: str, channel: str) -> Optional[datetime]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT sent_at FROM reminder_ledger WHERE user_id = ? AND week_id = ? AND channel = ?",
                (user_id, week_id, channel),
            ).fetchone()
        return load_instant(row["sent_at"]) if row else None

    def count_ledger_entries(self, user_id: str, week_id: str) -> int:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM reminder_ledger WHERE user_id = ? AND week_id = ?",
                (user_id, week_id),
            ).fetchone()
        return row["total"]

    # endregion

    # region Daily buckets
    def replace_daily_bucket(
        self, org_id: str, user_id: str, bucket_date: date, bucket: Optional[DailyBucket]
    ) -> None:
        """Delete the stored bucket for the user-day and write ``bucket`` if given."""

        with self.connect() as conn:
            conn.execute(
                "DELETE FROM compliance_metrics_daily WHERE org_id = ? AND user_id = ? AND bucket_date = ?",
                (org_id, user_id, bucket_date.isoformat()),
            )
            if bucket is not None:
                record = asdict(bucket)
                record["bucket_date"] = bucket.bucket_date.isoformat()
                conn.execute(
                    """
                    INSERT INTO compliance_metrics_daily (
                        org_id, user_id, team_id, bucket_date,
                        checkin_compliance_count, checkin_on_time_count,
                        review_compliance_count, review_on_time_count
                    )
                    VALUES (
                        :org_id, :user_id, :team_id, :bucket_date,
                        :checkin_compliance_count, :checkin_on_time_count,
                        :review_compliance_count, :review_on_time_count
                    )
                    """,
                    record,
                )
            conn.commit()

    def list_daily_buckets(
        self,
        org_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        team_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[DailyBucket]:
        query = "SELECT * FROM compliance_metrics_daily WHERE org_id = ?"
        params: List[Any] = [org_id]
        if start is not None:
            query += " AND bucket_date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND bucket_date <= ?"
            params.append(end.isoformat())
        if team_id is not None:
            query += " AND team_id = ?"
            params.append(team_id)
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self.connect() as conn:
            rows = conn.execute(query + " ORDER BY bucket_date, user_id", params).fetchall()
        return [
            DailyBucket(
                org_id=row["org_id"],
                user_id=row["user_id"],
                team_id=row["team_id"],
                bucket_date=date.fromisoformat(row["bucket_date"]),
                checkin_compliance_count=row["checkin_compliance_count"],
                checkin_on_time_count=row["checkin_on_time_count"],
                review_compliance_count=row["review_compliance_count"],
                review_on_time_count=row["review_on_time_count"],
            )
            for row in rows
        ]

    def clear_daily_buckets(self, org_id: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM compliance_metrics_daily WHERE org_id = ?", (org_id,))
            conn.commit()

    # endregion

    # region Watermarks
    def get_watermark(self, org_id: str) -> Optional[datetime]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT last_processed_at FROM aggregation_watermarks WHERE org_id = ?", (org_id,)
            ).fetchone()
        return load_instant(row["last_processed_at"]) if row else None

    def set_watermark(self, org_id: str, processed_at: datetime) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO aggregation_watermarks (org_id, last_processed_at)
                VALUES (?, ?)
                ON CONFLICT(org_id) DO UPDATE SET
                    last_processed_at=excluded.last_processed_at,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (org_id, dump_instant(processed_at)),
            )
            conn.commit()

    def clear_watermark(self, org_id: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM aggregation_watermarks WHERE org_id = ?", (org_id,))
            conn.commit()

    # endregion


def _row_to_user(row: Row) -> User:
    return User(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        team_id=row["team_id"],
        manager_id=row["manager_id"],
        is_active=bool(row["is_active"]),
    )


def _row_to_checkin(row: Row) -> CheckIn:
    return CheckIn(
        id=row["id"],
        user_id=row["user_id"],
        organization_id=row["organization_id"],
        week_id=row["week_id"],
        submitted_at=load_instant(row["submitted_at"]),
        is_complete=bool(row["is_complete"]),
        mood=row["mood"],
    )


__all__ = ["Database", "dump_instant", "load_instant"]
