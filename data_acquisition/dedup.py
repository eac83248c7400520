"""
Request deduplication.

At most one underlying call per key is in flight at any instant. Callers
arriving while it runs share its outcome, value or exception. The entry is
removed as soon as the call completes or is aborted, so the next caller
starts fresh.

Each caller awaits a shielded view of the shared task. Cancelling a caller
only cancels the underlying call when no other caller is still waiting on it.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from data_acquisition.models import PendingRequest


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """Collapses concurrent identical requests into one."""

    def __init__(self) -> None:
        self._in_flight: dict[str, PendingRequest[Any]] = {}
        self._total_requests = 0
        self._deduped_requests = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def total_requests(self) -> int:
        return self._total_requests

    @property
    def deduped_requests(self) -> int:
        return self._deduped_requests

    @property
    def deduplication_rate(self) -> float:
        """Fraction of requests served by an already in-flight call."""
        if self._total_requests == 0:
            return 0.0
        return self._deduped_requests / self._total_requests

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def deduped_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run `fetcher` for `key` unless a call for `key` is already running.

        Args:
            key: Request identity
            fetcher: Zero-argument coroutine factory, invoked at most once
                per in-flight window

        Returns:
            The shared result
        """
        self._total_requests += 1

        pending = self._in_flight.get(key)
        if pending is None or pending.task.done():
            task = asyncio.ensure_future(fetcher())
            pending = PendingRequest(key=key, task=task, started_at=time.monotonic())
            self._in_flight[key] = pending
            task.add_done_callback(lambda t, p=pending: self._on_done(p))
        else:
            self._deduped_requests += 1
            logger.debug(f"Joined in-flight request for {key} ({pending.waiters} waiting)")

        pending.waiters += 1
        released = False
        try:
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            pending.waiters -= 1
            released = True
            if pending.waiters == 0 and not pending.task.done():
                logger.debug(f"Last waiter for {key} cancelled, aborting shared request")
                if self._in_flight.get(key) is pending:
                    del self._in_flight[key]
                pending.task.cancel()
            raise
        finally:
            if not released:
                pending.waiters -= 1

    def _on_done(self, pending: PendingRequest[Any]) -> None:
        if self._in_flight.get(pending.key) is pending:
            del self._in_flight[pending.key]
        task = pending.task
        if not task.cancelled() and task.exception() is not None and pending.waiters == 0:
            logger.debug(f"Request for {pending.key} failed with no waiters: {task.exception()}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_requests": self._total_requests,
            "deduped_requests": self._deduped_requests,
            "in_flight": len(self._in_flight),
            "deduplication_rate": self.deduplication_rate,
            "deduplication_rate_percent": round(self.deduplication_rate * 100, 2),
        }

    def oldest_in_flight(self) -> Optional[float]:
        """Age in seconds of the longest-running shared request."""
        if not self._in_flight:
            return None
        now = time.monotonic()
        return max(now - p.started_at for p in self._in_flight.values())

    def clear(self) -> None:
        """Forget in-flight bookkeeping. Running tasks are left alone."""
        self._in_flight.clear()

    def reset_stats(self) -> None:
        self._total_requests = 0
        self._deduped_requests = 0
