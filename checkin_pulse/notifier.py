"""Hand-off of reminder tasks to the notification collaborator."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, Optional, Protocol

import httpx

from .models import ReminderTask

logger = logging.getLogger(__name__)

RECENT_TASK_HISTORY = 500


class NotifierError(RuntimeError):
    """Raised when the notification endpoint rejects a reminder task."""

    def __init__(self, task: ReminderTask, status_code: int, detail: str) -> None:
        super().__init__(
            f"Notifier rejected reminder for {task.user_id} week {task.week_id}: {status_code} {detail}"
        )
        self.task = task
        self.status_code = status_code
        self.detail = detail


class ReminderSink(Protocol):
    async def send(self, task: ReminderTask) -> None: ...

    async def close(self) -> None: ...


def task_payload(task: ReminderTask) -> Dict[str, Any]:
    return {
        "user_id": task.user_id,
        "week_id": task.week_id,
        "channel": task.channel,
        "due_instant": task.due_instant.isoformat(),
    }


class WebhookReminderSink:
    """Posts each reminder task as JSON to the notification service."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._url = url
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, task: ReminderTask) -> None:
        response = await self._client.post(self._url, json=task_payload(task))
        if response.is_error:
            raise NotifierError(task, response.status_code, response.text[:200])


class LoggingReminderSink:
    """Logs tasks and keeps the most recent ones; used when no endpoint is configured."""

    def __init__(self, history: int = RECENT_TASK_HISTORY) -> None:
        self.sent: Deque[ReminderTask] = deque(maxlen=history)

    async def close(self) -> None:
        return None

    async def send(self, task: ReminderTask) -> None:
        self.sent.append(task)
        logger.info(
            "Reminder due for %s (week %s, %s) before %s",
            task.user_id,
            task.week_id,
            task.channel,
            task.due_instant.isoformat(),
        )


__all__ = [
    "NotifierError",
    "ReminderSink",
    "WebhookReminderSink",
    "LoggingReminderSink",
    "task_payload",
]
