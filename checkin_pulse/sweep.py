"""Batch sweep that classifies the current week and emits reminder tasks."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import httpx

from .aggregator import classify_user, summarize, utcnow
from .errors import InvalidScheduleConfig, MalformedRecord
from .ledger import DEFAULT_CHANNEL, ReminderLedger
from .models import ComplianceSnapshot, ComplianceStatus, ReminderTask, ScheduleConfig, User, UserFilter, WeekAggregate
from .notifier import NotifierError, ReminderSink
from .schedule import compute_reminder_instant, current_week_id
from .storage import ComplianceStore

logger = logging.getLogger(__name__)

REMINDABLE = (ComplianceStatus.MISSING, ComplianceStatus.OVERDUE)

# Same size as the default thread pool that asyncio.to_thread uses.
DEFAULT_FETCH_WORKERS = min(32, (os.cpu_count() or 1) + 4)


@dataclass(slots=True)
class SweepResult:
    org_id: str
    week_id: str
    aggregate: Optional[WeekAggregate] = None
    tasks: List[ReminderTask] = field(default_factory=list)
    already_reminded: List[str] = field(default_factory=list)
    failed_deliveries: List[str] = field(default_factory=list)

    @property
    def skipped_user_ids(self) -> Tuple[str, ...]:
        return self.aggregate.skipped_user_ids if self.aggregate else ()


def _release(limiter: asyncio.Semaphore, job: asyncio.Future) -> None:
    limiter.release()
    if not job.cancelled():
        # Retrieve the outcome so an abandoned fetch does not log as unhandled.
        job.exception()


class ReminderSweep:
    """Runs one pass over organizations; holds no state between passes.

    Each user's records are fetched in a worker thread under
    ``fetch_timeout``. At most ``max_concurrency`` fetches hold a thread at
    once, and the timeout only starts when a fetch gets one, so waiting in
    line never counts against it. A user whose fetch times out or whose
    records are malformed is skipped and logged; the pass carries on.
    """

    def __init__(
        self,
        store: ComplianceStore,
        ledger: ReminderLedger,
        sink: ReminderSink,
        *,
        channel: str = DEFAULT_CHANNEL,
        fetch_timeout: float = 10.0,
        max_concurrency: int = DEFAULT_FETCH_WORKERS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.sink = sink
        self.channel = channel
        self.fetch_timeout = fetch_timeout
        self.max_concurrency = max_concurrency
        self.clock = clock

    # region Classification
    def _load_snapshot(
        self, org_id: str, user: User, week_id: str, config: ScheduleConfig, now: datetime
    ) -> Tuple[ComplianceSnapshot, Optional[int]]:
        checkins = self.store.list_checkins(org_id, user_id=user.id, week_id=week_id)
        reviews = {review.checkin_id: review for review in self.store.list_reviews([c.id for c in checkins])}
        vacations = {vacation.week_id for vacation in self.store.list_vacations(org_id, user.id, week_id)}
        exemptions = {e.week_id: e.reason for e in self.store.list_exemptions(org_id, user.id, week_id)}
        snapshot = classify_user(
            user,
            week_id,
            config,
            now,
            checkins=checkins,
            reviews=reviews,
            vacation_weeks=vacations,
            exemptions=exemptions,
        )
        mood = checkins[0].mood if snapshot.status is ComplianceStatus.SUBMITTED else None
        return snapshot, mood

    async def _classify(
        self,
        limiter: asyncio.Semaphore,
        org_id: str,
        user: User,
        week_id: str,
        config: ScheduleConfig,
        now: datetime,
    ) -> Tuple[ComplianceSnapshot, Optional[int]]:
        await limiter.acquire()
        job = asyncio.ensure_future(asyncio.to_thread(self._load_snapshot, org_id, user, week_id, config, now))
        # A timed-out fetch keeps its thread until it returns, so it keeps its slot too.
        job.add_done_callback(lambda finished: _release(limiter, finished))
        return await asyncio.wait_for(asyncio.shield(job), timeout=self.fetch_timeout)

    # endregion

    # region Sweep
    async def run_organization(self, org_id: str, now: Optional[datetime] = None) -> SweepResult:
        now = now or self.clock()
        config = self.store.get_organization_schedule(org_id)
        week_id = current_week_id(now, config)
        result = SweepResult(org_id=org_id, week_id=week_id)

        users = self.store.list_users(org_id, UserFilter(active_only=True))
        limiter = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._classify(limiter, org_id, user, week_id, config, now) for user in users),
            return_exceptions=True,
        )

        snapshots: List[ComplianceSnapshot] = []
        moods: List[int] = []
        skipped: List[str] = []
        for user, outcome in zip(users, outcomes):
            if isinstance(outcome, asyncio.TimeoutError):
                logger.warning("Timed out fetching records for user %s; skipping", user.id)
                skipped.append(user.id)
            elif isinstance(outcome, MalformedRecord):
                logger.warning("Skipping user %s: %s", user.id, outcome.reason)
                skipped.append(user.id)
            elif isinstance(outcome, Exception):
                logger.warning("Could not classify user %s; skipping", user.id, exc_info=outcome)
                skipped.append(user.id)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                snapshot, mood = outcome
                snapshots.append(snapshot)
                if mood is not None:
                    moods.append(mood)

        result.aggregate = summarize(week_id, snapshots, moods, skipped)

        if now < compute_reminder_instant(now, config):
            logger.debug("Reminder time for organization %s week %s has not arrived", org_id, week_id)
            return result

        for snapshot in sorted(snapshots, key=lambda item: item.user_id):
            if snapshot.status not in REMINDABLE:
                continue
            claimed = await asyncio.to_thread(
                self.ledger.mark_sent, snapshot.user_id, week_id, now, self.channel
            )
            if not claimed:
                result.already_reminded.append(snapshot.user_id)
                continue
            task = ReminderTask(snapshot.user_id, week_id, self.channel, snapshot.due_instant)
            try:
                await self.sink.send(task)
            except (NotifierError, httpx.HTTPError) as exc:
                logger.warning("Reminder hand-off failed for user %s: %s", snapshot.user_id, exc)
                result.failed_deliveries.append(snapshot.user_id)
                continue
            result.tasks.append(task)

        logger.info(
            "Organization %s week %s: %d reminder(s) emitted, %d already sent, %d skipped",
            org_id,
            week_id,
            len(result.tasks),
            len(result.already_reminded),
            len(skipped),
        )
        return result

    async def run(self, now: Optional[datetime] = None) -> List[SweepResult]:
        """Sweep every organization; a bad organization is logged and skipped."""

        now = now or self.clock()
        results: List[SweepResult] = []
        for org_id in self.store.list_organization_ids():
            try:
                results.append(await self.run_organization(org_id, now))
            except (InvalidScheduleConfig, KeyError) as exc:
                logger.error("Skipping organization %s: %s", org_id, exc)
        return results

    # endregion


__all__ = ["ReminderSweep", "SweepResult", "REMINDABLE"]
