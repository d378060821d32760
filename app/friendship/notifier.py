"""
Friendship notifications

The core only hands ``(target_user_id, event_type, payload)`` to a notifier;
token lookup and push fan-out belong to the worker that consumes the queue.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol

from app.core.config import settings
from app.core.logging import get_logger
from app.infra.queue import JobQueue, get_queue

logger = get_logger(__name__)


class Notifier(Protocol):
    async def notify(self, target_user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        ...


class QueueNotifier:
    """Enqueues one delivery job per notification on an RQ queue"""

    def __init__(self, queue: JobQueue, job: str = settings.notification_job):
        self.queue = queue
        self.job = job

    async def notify(self, target_user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(
            self.queue.enqueue,
            self.job,
            kwargs={"target_user_id": target_user_id, "event_type": event_type, "payload": dict(payload)},
        )


class NullNotifier:
    """Used when notifications are switched off"""

    async def notify(self, target_user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        logger.debug("notify.skipped", target_user_id=target_user_id, event_type=event_type)


def build_notifier(queue: Optional[JobQueue] = None) -> Notifier:
    if not settings.enable_notifications:
        return NullNotifier()
    if queue is None:
        queue = get_queue(settings.notification_queue)
    return QueueNotifier(queue)
