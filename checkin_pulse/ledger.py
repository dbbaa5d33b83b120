"""At-most-once bookkeeping for reminder dispatch."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from .db import Database

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "slack"


class ReminderLedger:
    """Records which users were reminded for which week, per channel.

    :meth:`mark_sent` is a single conditional insert against the table's
    primary key, so dispatchers should claim a reminder with it and send
    only when it returns ``True``. :meth:`should_send` is a read for
    previews and dashboards.
    """

    def __init__(self, database: Database, default_channel: str = DEFAULT_CHANNEL) -> None:
        self.database = database
        self.default_channel = default_channel

    def should_send(self, user_id: str, week_id: str, channel: Optional[str] = None) -> bool:
        entry = self.database.get_ledger_entry(user_id, week_id, channel or self.default_channel)
        return entry is None

    def mark_sent(
        self,
        user_id: str,
        week_id: str,
        at: Optional[datetime] = None,
        channel: Optional[str] = None,
    ) -> bool:
        """Record a dispatch; returns ``True`` only for the call that created the entry."""

        channel = channel or self.default_channel
        inserted = self.database.insert_ledger_entry(
            user_id, week_id, channel, at or datetime.now(timezone.utc)
        )
        if not inserted:
            logger.debug("Reminder for %s week %s on %s already recorded", user_id, week_id, channel)
        return inserted


__all__ = ["ReminderLedger", "DEFAULT_CHANNEL"]
