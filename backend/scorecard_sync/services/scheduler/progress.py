"""Fan-out of live progress events to per-schedule subscribers."""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Records buffered for a queue subscriber before new ones are dropped
QUEUE_SIZE = 256


class ProgressEvent(BaseModel):
    schedule_id: str = Field(serialization_alias="scheduleId")
    progress: int
    status: str
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_sse(self) -> str:
        """Render as a ``text/event-stream`` record."""
        return f"data: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class Subscription:
    """Handle returned by :meth:`ProgressBroadcaster.subscribe`.

    Without a callback, received records are buffered in ``queue``, which
    holds at most ``maxsize`` records.
    """

    def __init__(
        self,
        schedule_id: str,
        callback: Callable[[str], None] | None = None,
        maxsize: int = QUEUE_SIZE,
    ):
        self.schedule_id = schedule_id
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._callback = callback or self.queue.put_nowait

    def push(self, data: str) -> None:
        self._callback(data)

    async def get(self) -> str:
        return await self.queue.get()


class ProgressBroadcaster:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        schedule_id: str,
        callback: Callable[[str], None] | None = None,
        maxsize: int = QUEUE_SIZE,
    ) -> Subscription:
        subscription = Subscription(schedule_id, callback, maxsize)
        with self._lock:
            self._subscribers.setdefault(schedule_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.schedule_id)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.schedule_id]

    def subscriber_count(self, schedule_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(schedule_id, ()))

    def publish(self, event: ProgressEvent) -> int:
        """Deliver ``event`` to current subscribers; returns how many got it."""
        with self._lock:
            # Snapshot so subscribers may unsubscribe while we deliver
            targets = list(self._subscribers.get(event.schedule_id, ()))
        if not targets:
            return 0

        data = event.to_sse()
        delivered = 0
        for subscription in targets:
            try:
                subscription.push(data)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber of {event.schedule_id} is not keeping up, dropping event")
            except Exception:
                logger.warning(
                    "Dropping progress event for a subscriber of %s",
                    event.schedule_id,
                    exc_info=True,
                )
        return delivered
