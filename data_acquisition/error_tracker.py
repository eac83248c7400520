"""
Error Tracker - Classified, bounded error history with recovery accounting.

Every provider failure absorbed by the orchestrator lands here as an
ErrorEvent. The buffer is a FIFO ring: once `max_errors` is reached the
oldest event is dropped for each new one.
"""

import asyncio
import json
import logging
import threading
import traceback
import uuid
from collections import deque
from typing import Any, Optional

import aiohttp

from data_acquisition.events import EventChannel
from data_acquisition.exceptions import (
    FetchError,
    FetchTimeoutError,
    NormalizationError,
    RetryExhaustedError,
)
from data_acquisition.models import (
    AcquisitionEvent,
    ErrorEvent,
    ErrorType,
    EventType,
    utcnow,
)


logger = logging.getLogger(__name__)


NETWORK_KEYWORDS = ("fetch", "network", "timeout", "abort", "connection")
VALIDATION_KEYWORDS = ("validation", "invalid", "required", "empty", "malformed")

_NETWORK_TYPES = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    aiohttp.ClientConnectionError,
    FetchTimeoutError,
)


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, FetchError):
        return error.status_code
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status
    return None


def classify_error(error: BaseException) -> ErrorType:
    """
    Map an exception onto the error taxonomy.

    Order: network, server (5xx), client (4xx), validation, unknown.
    RetryExhaustedError is judged by the last error it wraps.
    """
    if isinstance(error, RetryExhaustedError) and error.last_error is not None:
        return classify_error(error.last_error)

    message = str(getattr(error, "message", None) or error).lower()
    status = _status_code(error)

    if isinstance(error, _NETWORK_TYPES):
        return ErrorType.NETWORK
    if status is None and any(word in message for word in NETWORK_KEYWORDS):
        return ErrorType.NETWORK

    if status is not None and 500 <= status < 600:
        return ErrorType.SERVER
    if status is not None and 400 <= status < 500:
        return ErrorType.CLIENT

    if isinstance(error, (NormalizationError, ValueError)):
        return ErrorType.VALIDATION
    if any(word in message for word in VALIDATION_KEYWORDS):
        return ErrorType.VALIDATION

    return ErrorType.UNKNOWN


class ErrorTracker:
    """
    Bounded error history.

    Args:
        max_errors: Ring buffer capacity
        channel: Optional event channel notified on every tracked error
    """

    def __init__(self, max_errors: int = 100, channel: Optional[EventChannel] = None) -> None:
        if max_errors < 1:
            raise ValueError("max_errors must be >= 1")
        self._max_errors = max_errors
        self._errors: deque[ErrorEvent] = deque(maxlen=max_errors)
        self._channel = channel
        self._lock = threading.RLock()

        self._recovery_attempts: dict[str, int] = {}
        self._recovery_successes: dict[str, int] = {}

    @property
    def max_errors(self) -> int:
        return self._max_errors

    def __len__(self) -> int:
        return len(self._errors)

    # =========================================================
    # TRACKING
    # =========================================================

    def track(
        self,
        error: BaseException,
        component: str,
        action: str,
        error_type: Optional[ErrorType] = None,
        **context: Any,
    ) -> ErrorEvent:
        """Classify, store, log and publish one error."""
        event = ErrorEvent(
            id=f"err_{uuid.uuid4().hex[:12]}",
            type=error_type or classify_error(error),
            message=str(getattr(error, "message", None) or error) or error.__class__.__name__,
            context={"component": component, "action": action, **context},
            timestamp=utcnow(),
            stack="".join(traceback.format_exception(type(error), error, error.__traceback__))
            if error.__traceback__ is not None else None,
            status_code=_status_code(error),
        )

        with self._lock:
            self._errors.append(event)

        logger.warning(
            f"[{component}] {event.type.value} error during {action}: {event.message}"
        )

        if self._channel is not None:
            self._channel.publish(AcquisitionEvent(
                type=EventType.ERROR_TRACKED,
                provider=component,
                detail={"error_id": event.id, "error_type": event.type.value, "action": action},
            ))
        return event

    @staticmethod
    def _recovery_key(component: str, action: str) -> str:
        return f"{component}:{action}"

    def track_recovery_attempt(self, component: str, action: str) -> None:
        key = self._recovery_key(component, action)
        with self._lock:
            self._recovery_attempts[key] = self._recovery_attempts.get(key, 0) + 1

    def track_recovery(self, component: str, action: str) -> int:
        """
        Record a successful recovery and mark matching errors recovered.

        Returns:
            Number of buffered errors newly marked as recovered
        """
        key = self._recovery_key(component, action)
        marked = 0
        with self._lock:
            self._recovery_successes[key] = self._recovery_successes.get(key, 0) + 1
            for event in self._errors:
                if event.component == component and event.action == action and not event.recovered:
                    event.recovered = True
                    marked += 1

        logger.info(f"[{component}] Recovered during {action}")
        return marked

    def recovery_rate(self) -> float:
        """Recovery successes over attempts, as a percentage."""
        with self._lock:
            attempts = sum(self._recovery_attempts.values())
            successes = sum(self._recovery_successes.values())
        if attempts == 0:
            return 0.0
        return successes / attempts * 100

    # =========================================================
    # QUERIES
    # =========================================================

    def get_recent_errors(self, limit: int = 10) -> list[ErrorEvent]:
        """Newest first."""
        with self._lock:
            events = list(self._errors)
        events.reverse()
        return events[:limit]

    def get_errors_by_type(self, error_type: ErrorType) -> list[ErrorEvent]:
        with self._lock:
            return [e for e in self._errors if e.type is error_type]

    def get_errors_by_component(self, component: str) -> list[ErrorEvent]:
        with self._lock:
            return [e for e in self._errors if e.component == component]

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            events = list(self._errors)

        by_type: dict[str, int] = {t.value: 0 for t in ErrorType}
        by_component: dict[str, int] = {}
        for event in events:
            by_type[event.type.value] += 1
            by_component[event.component] = by_component.get(event.component, 0) + 1

        recent = list(reversed(events))[:10]
        return {
            "total_errors": len(events),
            "errors_by_type": by_type,
            "errors_by_component": by_component,
            "recovery_rate": round(self.recovery_rate(), 2),
            "recent_errors": [e.to_dict() for e in recent],
        }

    def export_errors(self) -> str:
        """Serialize the buffer (oldest first) as JSON."""
        with self._lock:
            events = [e.to_dict() for e in self._errors]
        return json.dumps(events, indent=2)

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
            self._recovery_attempts.clear()
            self._recovery_successes.clear()
