"""
Provider Health Tests.

============================================================
PURPOSE
============================================================
Latency windows, failure streaks and diagnostics snapshots.

============================================================
"""

import pytest

from data_acquisition.error_tracker import ErrorTracker
from data_acquisition.health import (
    HealthReporter,
    ProviderLatencyTracker,
    ProviderRecoveryTracker,
)


# ============================================================
# LATENCY
# ============================================================

class TestLatencyTracker:
    """Tests for ProviderLatencyTracker."""

    def test_empty_snapshot(self):
        snapshot = ProviderLatencyTracker().snapshot("binance")

        assert snapshot.samples == 0
        assert snapshot.avg == 0.0

    def test_aggregates(self):
        tracker = ProviderLatencyTracker()
        for value in (100, 200, 300):
            tracker.record("binance", value)

        snapshot = tracker.snapshot("binance")

        assert snapshot.avg == pytest.approx(200)
        assert snapshot.min == 100
        assert snapshot.max == 300
        assert snapshot.last == 300
        assert snapshot.samples == 3

    def test_window_is_bounded(self):
        tracker = ProviderLatencyTracker(max_samples=100)
        for i in range(150):
            tracker.record("x", float(i))

        snapshot = tracker.snapshot("x")

        assert snapshot.samples == 100
        assert snapshot.min == 50


# ============================================================
# RECOVERY
# ============================================================

class TestRecoveryTracker:
    """Tests for ProviderRecoveryTracker."""

    def test_unknown_provider_is_healthy(self):
        tracker = ProviderRecoveryTracker()

        assert tracker.is_healthy("new")
        assert tracker.snapshot("new").uptime == 100.0

    def test_unhealthy_after_three_consecutive_failures(self):
        tracker = ProviderRecoveryTracker()

        assert not tracker.record_failure("x")
        assert not tracker.record_failure("x")
        assert tracker.is_healthy("x")
        assert tracker.record_failure("x")
        assert not tracker.is_healthy("x")

    def test_success_recovers_and_resets_streak(self):
        tracker = ProviderRecoveryTracker()
        for _ in range(3):
            tracker.record_failure("x")

        assert tracker.record_success("x")
        assert tracker.is_healthy("x")
        assert tracker.consecutive_failures("x") == 0

    def test_snapshot_rates(self):
        tracker = ProviderRecoveryTracker()
        tracker.record_success("x")
        tracker.record_success("x")
        tracker.record_success("x")
        tracker.record_failure("x")

        snapshot = tracker.snapshot("x")

        assert snapshot.success_rate == 75.0
        assert snapshot.uptime == 75.0
        assert snapshot.total_attempts == 4
        assert snapshot.consecutive_failures == 1
        assert snapshot.last_failure is not None


# ============================================================
# REPORTER
# ============================================================

class TestHealthReporter:
    """Tests for HealthReporter."""

    def test_diagnostics_shape(self):
        errors = ErrorTracker()
        reporter = HealthReporter(ProviderLatencyTracker(), ProviderRecoveryTracker(), errors)
        reporter.latency.record("coingecko", 120)
        reporter.recovery.record_success("coingecko")
        errors.track(RuntimeError("timeout"), "coingecko", "fetch_price")
        errors.track(RuntimeError("other"), "binance", "fetch_price")

        data = reporter.diagnostics("coingecko").to_dict()

        assert data["provider"] == "coingecko"
        assert data["latency"]["avg"] == 120
        assert data["recovery"]["is_healthy"] is True
        assert data["errors"]["total_errors"] == 1
        assert data["errors"]["last_error"]["message"] == "timeout"

    def test_diagnostics_are_side_effect_free(self):
        errors = ErrorTracker()
        reporter = HealthReporter(ProviderLatencyTracker(), ProviderRecoveryTracker(), errors)

        reporter.diagnostics("x")
        reporter.diagnostics("x")

        assert reporter.recovery.providers() == []
        assert len(errors) == 0

    def test_summary(self):
        reporter = HealthReporter(ProviderLatencyTracker(), ProviderRecoveryTracker(), ErrorTracker())
        for _ in range(3):
            reporter.recovery.record_failure("down")

        assert reporter.summary(["up", "down"]) == {"total": 2, "healthy": 1, "unhealthy": 1}
