"""
Token bucket rate limiter.

One bucket per provider. Tokens refill lazily from elapsed monotonic time;
there is no background task. While callers are queued a single loop timer is
armed for the moment the head of the queue can be served.

Waiters are released strictly in arrival order. A waiter cancelled while
queued is dropped without blocking the ones behind it.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Optional


logger = logging.getLogger(__name__)

_MIN_WAKEUP_DELAY = 0.001


class TokenBucket:
    """
    Asyncio token bucket.

    Args:
        capacity: Maximum burst size (tokens held when idle)
        refill_rate: Tokens added per second
        name: Label used in log lines and diagnostics

    Usage:
        limiter = TokenBucket(capacity=5, refill_rate=1.0, name="coingecko")
        await limiter.wait()
        ...perform request...
    """

    def __init__(self, capacity: float, refill_rate: float, name: str = "") -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")

        self.name = name
        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._tokens = float(capacity)
        self._last_refill = time.monotonic()

        self._waiters: Deque[asyncio.Future] = deque()
        self._wakeup: Optional[asyncio.TimerHandle] = None

        self._granted = 0
        self._queued = 0

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    @property
    def pending_waiters(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token without waiting. Never jumps the queue."""
        if self._waiters:
            return False
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            self._granted += 1
            return True
        return False

    async def wait(self) -> None:
        """Suspend until a token is available, then consume it."""
        if self.try_acquire():
            return

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)
        self._queued += 1
        self._schedule_wakeup(loop)

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Granted in the same tick the caller was cancelled: give it back.
                self._tokens = min(self._capacity, self._tokens + 1)
                self._granted -= 1
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            self._release(loop)
            raise

    def _release(self, loop: asyncio.AbstractEventLoop) -> None:
        self._refill()
        while self._waiters and self._tokens >= 1:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._tokens -= 1
            self._granted += 1
            waiter.set_result(None)
        self._schedule_wakeup(loop)

    def _schedule_wakeup(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._wakeup is not None:
            self._wakeup.cancel()
            self._wakeup = None

        while self._waiters and self._waiters[0].done():
            self._waiters.popleft()
        if not self._waiters:
            return

        self._refill()
        deficit = max(0.0, 1.0 - self._tokens)
        delay = max(deficit / self._refill_rate, _MIN_WAKEUP_DELAY)
        self._wakeup = loop.call_later(delay, self._on_wakeup, loop)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"[{self.name or 'bucket'}] {len(self._waiters)} waiter(s) queued, "
                f"next token in {delay:.3f}s"
            )

    def _on_wakeup(self, loop: asyncio.AbstractEventLoop) -> None:
        self._wakeup = None
        self._release(loop)

    def get_status(self) -> dict[str, Any]:
        """Diagnostics snapshot."""
        return {
            "name": self.name,
            "capacity": self._capacity,
            "refill_rate": self._refill_rate,
            "available_tokens": round(self.available_tokens, 3),
            "pending_waiters": self.pending_waiters,
            "granted": self._granted,
            "queued": self._queued,
        }

    def __repr__(self) -> str:
        return (
            f"<TokenBucket(name={self.name!r}, capacity={self._capacity}, "
            f"refill_rate={self._refill_rate})>"
        )
