"""Entrypoint for the periodic sweep via `python -m checkin_pulse.main`."""

from __future__ import annotations

import asyncio
import logging
import os

from .buckets import DailyBucketBuilder
from .config import Settings, load_settings
from .db import Database
from .ledger import ReminderLedger
from .notifier import LoggingReminderSink, ReminderSink, WebhookReminderSink
from .sweep import ReminderSweep

logger = logging.getLogger("checkin_pulse")


def build_sink(settings: Settings) -> ReminderSink:
    if settings.notifier_url:
        return WebhookReminderSink(
            settings.notifier_url,
            token=settings.notifier_token,
            timeout=settings.fetch_timeout_seconds,
        )
    logger.warning("NOTIFIER_URL is not set. Reminder tasks will only be logged.")
    return LoggingReminderSink()


async def run_once(sweep: ReminderSweep, buckets: DailyBucketBuilder, database: Database) -> None:
    await sweep.run()
    for org_id in database.list_organization_ids():
        try:
            await asyncio.to_thread(buckets.incremental_sweep, org_id)
        except Exception:
            logger.exception("Bucket sweep failed for organization %s", org_id)


async def run_forever(settings: Settings) -> None:
    database = Database(settings.database_path)
    sink = build_sink(settings)
    sweep = ReminderSweep(
        database,
        ReminderLedger(database, settings.reminder_channel),
        sink,
        channel=settings.reminder_channel,
        fetch_timeout=settings.fetch_timeout_seconds,
    )
    buckets = DailyBucketBuilder(database, database)
    try:
        while True:
            try:
                await run_once(sweep, buckets, database)
            except Exception:
                logger.exception("Sweep pass failed")
            await asyncio.sleep(settings.sweep_interval_seconds)
    finally:
        await sink.close()


def run() -> None:
    env_file = os.getenv("CHECKIN_PULSE_ENV")
    settings = load_settings(env_file)
    logging.basicConfig(level=settings.log_level, handlers=[logging.StreamHandler()])
    asyncio.run(run_forever(settings))


if __name__ == "__main__":  # pragma: no cover
    run()
