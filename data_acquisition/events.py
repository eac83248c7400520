"""
Observability event channel.

publish() never blocks and never raises: events go onto a bounded queue and
are dropped when it is full. A consumer task started on first publish fans
them out to subscribers. A failing subscriber is logged and skipped.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from data_acquisition.models import AcquisitionEvent


logger = logging.getLogger(__name__)

Subscriber = Callable[[AcquisitionEvent], Union[None, Awaitable[None]]]


class EventChannel:
    """Fire-and-forget notifications for monitoring hooks."""

    def __init__(self, max_queue: int = 1000) -> None:
        self._max_queue = max_queue
        self._queue: Optional[asyncio.Queue] = None
        self._subscribers: list[Subscriber] = []
        self._consumer: Optional[asyncio.Task] = None
        self._published = 0
        self._dropped = 0
        self._delivered = 0

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: AcquisitionEvent) -> bool:
        """Queue an event. Returns False if it was dropped."""
        if not self._subscribers:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): deliver synchronous subscribers inline.
            self._published += 1
            self._deliver_sync(event)
            return True

        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_queue)
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.debug(f"Event queue full, dropped {event.type.value}")
            return False

        self._published += 1
        if self._consumer is None or self._consumer.done():
            self._consumer = loop.create_task(self._consume())
        return True

    def _deliver_sync(self, event: AcquisitionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    result.close()
                    logger.debug("Async subscriber skipped outside event loop")
                    continue
                self._delivered += 1
            except Exception:
                logger.exception(f"Event subscriber failed on {event.type.value}")

    async def _consume(self) -> None:
        if self._queue is None:
            return
        while not self._queue.empty():
            event = self._queue.get_nowait()
            for callback in list(self._subscribers):
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                    self._delivered += 1
                except Exception:
                    logger.exception(f"Event subscriber failed on {event.type.value}")
            await asyncio.sleep(0)

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        while self._consumer is not None and not self._consumer.done():
            await asyncio.sleep(0)

    async def close(self) -> None:
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None

    def get_stats(self) -> dict[str, int]:
        return {
            "subscribers": len(self._subscribers),
            "published": self._published,
            "delivered": self._delivered,
            "dropped": self._dropped,
            "queued": self._queue.qsize() if self._queue is not None else 0,
        }
