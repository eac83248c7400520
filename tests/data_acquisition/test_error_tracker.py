"""
Error Tracker Tests.

============================================================
PURPOSE
============================================================
Error classification, ring buffer bounds, recovery accounting and
export of ErrorTracker.

============================================================
"""

import asyncio
import json

import aiohttp
import pytest

from data_acquisition.error_tracker import ErrorTracker, classify_error
from data_acquisition.events import EventChannel
from data_acquisition.exceptions import (
    FetchError,
    FetchTimeoutError,
    NormalizationError,
    RetryExhaustedError,
)
from data_acquisition.models import ErrorType, EventType


# ============================================================
# CLASSIFICATION
# ============================================================

class TestClassifyError:
    """Tests for classify_error()."""

    def test_timeouts_are_network(self):
        assert classify_error(asyncio.TimeoutError()) is ErrorType.NETWORK
        assert classify_error(FetchTimeoutError("Request timeout after 10s")) is ErrorType.NETWORK

    def test_connection_errors_are_network(self):
        assert classify_error(aiohttp.ClientConnectionError("refused")) is ErrorType.NETWORK
        assert classify_error(RuntimeError("network unreachable")) is ErrorType.NETWORK

    def test_status_codes(self):
        assert classify_error(FetchError("HTTP 502", status_code=502)) is ErrorType.SERVER
        assert classify_error(FetchError("HTTP 404", status_code=404)) is ErrorType.CLIENT

    def test_validation(self):
        assert classify_error(NormalizationError("bad payload")) is ErrorType.VALIDATION
        assert classify_error(RuntimeError("field is required")) is ErrorType.VALIDATION

    def test_unknown(self):
        assert classify_error(RuntimeError("something odd")) is ErrorType.UNKNOWN

    def test_retry_exhausted_uses_last_error(self):
        last = FetchError("HTTP 503", status_code=503)
        error = RetryExhaustedError("Failed after 4 attempts", attempts=4, last_error=last)

        assert classify_error(error) is ErrorType.SERVER

    def test_retry_exhausted_after_timeouts(self):
        last = FetchTimeoutError("Request timeout after 1s", timeout_seconds=1)
        error = RetryExhaustedError("Failed after 2 attempts", attempts=2, last_error=last)

        assert classify_error(error) is ErrorType.NETWORK


# ============================================================
# BUFFER
# ============================================================

class TestErrorBuffer:
    """Tests for the bounded FIFO buffer."""

    def test_keeps_newest_max_errors(self):
        tracker = ErrorTracker(max_errors=20)

        for i in range(30):
            tracker.track(RuntimeError(f"error {i}"), "binance", "fetch_price")

        assert len(tracker) == 20
        recent = tracker.get_recent_errors(limit=20)
        assert recent[0].message == "error 29"
        assert recent[-1].message == "error 10"

    def test_event_fields(self):
        tracker = ErrorTracker()

        event = tracker.track(
            FetchError("HTTP 500", source_name="kraken", status_code=500),
            "kraken",
            "fetch_ohlcv",
            key="BTC:1h:100",
        )

        assert event.type is ErrorType.SERVER
        assert event.status_code == 500
        assert event.component == "kraken"
        assert event.action == "fetch_ohlcv"
        assert event.context["key"] == "BTC:1h:100"
        assert event.id.startswith("err_")
        assert not event.recovered

    def test_explicit_type_overrides_classification(self):
        tracker = ErrorTracker()

        event = tracker.track(RuntimeError("odd"), "x", "y", error_type=ErrorType.CLIENT)

        assert event.type is ErrorType.CLIENT

    def test_stack_captured_for_raised_errors(self):
        tracker = ErrorTracker()
        try:
            raise ValueError("invalid symbol")
        except ValueError as e:
            event = tracker.track(e, "binance", "fetch_price")

        assert event.stack is not None
        assert "ValueError" in event.stack

    def test_filters(self):
        tracker = ErrorTracker()
        tracker.track(FetchError("HTTP 500", status_code=500), "binance", "fetch_price")
        tracker.track(FetchError("HTTP 404", status_code=404), "kraken", "fetch_price")
        tracker.track(FetchError("HTTP 503", status_code=503), "kraken", "fetch_ohlcv")

        assert len(tracker.get_errors_by_type(ErrorType.SERVER)) == 2
        assert len(tracker.get_errors_by_component("kraken")) == 2

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ErrorTracker(max_errors=0)


# ============================================================
# RECOVERY
# ============================================================

class TestRecovery:
    """Tests for recovery accounting."""

    def test_recovery_marks_matching_errors(self):
        tracker = ErrorTracker()
        tracker.track(RuntimeError("timeout"), "coingecko", "fetch_price")
        tracker.track(RuntimeError("timeout"), "coingecko", "fetch_ohlcv")

        tracker.track_recovery_attempt("coingecko", "fetch_price")
        marked = tracker.track_recovery("coingecko", "fetch_price")

        assert marked == 1
        events = {e.action: e for e in tracker.get_recent_errors()}
        assert events["fetch_price"].recovered
        assert not events["fetch_ohlcv"].recovered

    def test_recovery_rate(self):
        tracker = ErrorTracker()
        assert tracker.recovery_rate() == 0.0

        tracker.track_recovery_attempt("a", "fetch_price")
        tracker.track_recovery_attempt("a", "fetch_price")
        tracker.track_recovery("a", "fetch_price")

        assert tracker.recovery_rate() == pytest.approx(50.0)


# ============================================================
# STATS & EXPORT
# ============================================================

class TestStatsAndExport:
    """Tests for get_stats() and export_errors()."""

    def test_stats(self):
        tracker = ErrorTracker()
        for i in range(12):
            tracker.track(FetchError("HTTP 500", status_code=500), "binance", "fetch_price")
        tracker.track(NormalizationError("empty payload"), "kraken", "fetch_price")

        stats = tracker.get_stats()

        assert stats["total_errors"] == 13
        assert stats["errors_by_type"]["server"] == 12
        assert stats["errors_by_type"]["validation"] == 1
        assert stats["errors_by_component"] == {"binance": 12, "kraken": 1}
        assert len(stats["recent_errors"]) == 10
        assert stats["recent_errors"][0]["context"]["component"] == "kraken"

    def test_export_is_json(self):
        tracker = ErrorTracker()
        tracker.track(RuntimeError("boom"), "x", "y")

        exported = json.loads(tracker.export_errors())

        assert exported[0]["message"] == "boom"
        assert exported[0]["type"] == "unknown"

    def test_clear(self):
        tracker = ErrorTracker()
        tracker.track(RuntimeError("boom"), "x", "y")
        tracker.clear()

        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_publishes_to_channel(self):
        channel = EventChannel()
        received = []
        channel.subscribe(received.append)
        tracker = ErrorTracker(channel=channel)

        tracker.track(RuntimeError("boom"), "binance", "fetch_price")
        await channel.drain()

        assert len(received) == 1
        assert received[0].type is EventType.ERROR_TRACKED
        assert received[0].provider == "binance"
