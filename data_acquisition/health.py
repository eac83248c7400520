"""
Provider Health Tracking.

============================================================
PURPOSE
============================================================

Per-provider latency samples and success/failure streaks, combined with
the error tracker into a read-only diagnostics snapshot.

- Latency: last 100 samples per provider (avg/min/max/last).
- Recovery: consecutive failures/successes, success rate, uptime.
  A provider is unhealthy after 3 consecutive failures and healthy
  again on its next success.

Snapshots are side-effect free.

============================================================
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from data_acquisition.error_tracker import ErrorTracker
from data_acquisition.models import (
    ErrorSnapshot,
    LatencySnapshot,
    ProviderDiagnostics,
    RecoverySnapshot,
    utcnow,
)


logger = logging.getLogger(__name__)


MAX_LATENCY_SAMPLES = 100
UNHEALTHY_AFTER_FAILURES = 3


# =============================================================
# LATENCY
# =============================================================


class ProviderLatencyTracker:
    """Rolling latency window per provider (milliseconds)."""

    def __init__(self, max_samples: int = MAX_LATENCY_SAMPLES) -> None:
        self._max_samples = max_samples
        self._samples: dict[str, deque[float]] = {}
        self._lock = threading.RLock()

    def record(self, provider: str, latency_ms: float) -> None:
        with self._lock:
            window = self._samples.get(provider)
            if window is None:
                window = deque(maxlen=self._max_samples)
                self._samples[provider] = window
            window.append(max(0.0, latency_ms))

    def snapshot(self, provider: str) -> LatencySnapshot:
        with self._lock:
            window = list(self._samples.get(provider, ()))
        if not window:
            return LatencySnapshot()
        return LatencySnapshot(
            avg=round(sum(window) / len(window), 2),
            min=round(min(window), 2),
            max=round(max(window), 2),
            last=round(window[-1], 2),
            samples=len(window),
        )

    def providers(self) -> list[str]:
        with self._lock:
            return list(self._samples)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()


# =============================================================
# RECOVERY
# =============================================================


@dataclass
class _Streak:
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    healthy: bool = True


class ProviderRecoveryTracker:
    """Success/failure streaks and health state per provider."""

    def __init__(self, unhealthy_after: int = UNHEALTHY_AFTER_FAILURES) -> None:
        self._unhealthy_after = unhealthy_after
        self._streaks: dict[str, _Streak] = {}
        self._lock = threading.RLock()

    def _get(self, provider: str) -> _Streak:
        streak = self._streaks.get(provider)
        if streak is None:
            streak = _Streak()
            self._streaks[provider] = streak
        return streak

    def record_success(self, provider: str) -> bool:
        """Returns True when this success brought the provider back to health."""
        with self._lock:
            streak = self._get(provider)
            streak.successes += 1
            streak.consecutive_successes += 1
            streak.consecutive_failures = 0
            streak.last_success = utcnow()
            recovered = not streak.healthy
            streak.healthy = True

        if recovered:
            logger.info(f"[{provider}] Provider recovered")
        return recovered

    def record_failure(self, provider: str) -> bool:
        """Returns True when this failure made the provider unhealthy."""
        with self._lock:
            streak = self._get(provider)
            streak.failures += 1
            streak.consecutive_failures += 1
            streak.consecutive_successes = 0
            streak.last_failure = utcnow()
            degraded = streak.healthy and streak.consecutive_failures >= self._unhealthy_after
            if degraded:
                streak.healthy = False

        if degraded:
            logger.warning(
                f"[{provider}] Provider unhealthy after "
                f"{self._unhealthy_after} consecutive failures"
            )
        return degraded

    def consecutive_failures(self, provider: str) -> int:
        with self._lock:
            streak = self._streaks.get(provider)
            return streak.consecutive_failures if streak else 0

    def is_healthy(self, provider: str) -> bool:
        with self._lock:
            streak = self._streaks.get(provider)
            return streak.healthy if streak else True

    def snapshot(self, provider: str) -> RecoverySnapshot:
        with self._lock:
            streak = self._streaks.get(provider)
            if streak is None:
                return RecoverySnapshot(uptime=100.0, success_rate=100.0)
            total = streak.successes + streak.failures
            rate = round(streak.successes / total * 100, 2) if total else 100.0
            return RecoverySnapshot(
                uptime=rate,
                success_rate=rate,
                consecutive_failures=streak.consecutive_failures,
                consecutive_successes=streak.consecutive_successes,
                total_attempts=total,
                is_healthy=streak.healthy,
                last_success=streak.last_success,
                last_failure=streak.last_failure,
            )

    def providers(self) -> list[str]:
        with self._lock:
            return list(self._streaks)

    def clear(self) -> None:
        with self._lock:
            self._streaks.clear()


# =============================================================
# REPORTER
# =============================================================


class HealthReporter:
    """Builds ProviderDiagnostics from the three trackers."""

    def __init__(
        self,
        latency: ProviderLatencyTracker,
        recovery: ProviderRecoveryTracker,
        errors: ErrorTracker,
        recent_limit: int = 5,
    ) -> None:
        self.latency = latency
        self.recovery = recovery
        self.errors = errors
        self._recent_limit = recent_limit

    def diagnostics(self, provider: str) -> ProviderDiagnostics:
        provider_errors = self.errors.get_errors_by_component(provider)
        provider_errors.reverse()
        return ProviderDiagnostics(
            provider=provider,
            latency=self.latency.snapshot(provider),
            recovery=self.recovery.snapshot(provider),
            errors=ErrorSnapshot(
                total_errors=len(provider_errors),
                recent_errors=tuple(provider_errors[:self._recent_limit]),
                last_error=provider_errors[0] if provider_errors else None,
            ),
        )

    def all_diagnostics(self, providers: Iterable[str]) -> dict[str, ProviderDiagnostics]:
        return {name: self.diagnostics(name) for name in providers}

    def summary(self, providers: Iterable[str]) -> dict[str, int]:
        names = list(providers)
        healthy = sum(1 for name in names if self.recovery.is_healthy(name))
        return {
            "total": len(names),
            "healthy": healthy,
            "unhealthy": len(names) - healthy,
        }
