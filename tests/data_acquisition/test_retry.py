"""
Retrying Fetcher Tests.

============================================================
PURPOSE
============================================================
Retry classification, backoff, per-attempt timeouts and the
"resource loading" wait loop of RetryingFetcher.

============================================================
"""

import asyncio

import aiohttp
import pytest

from data_acquisition.exceptions import FetchError, FetchTimeoutError, RetryExhaustedError
from data_acquisition.retry import FetchResponse, RetryingFetcher, RetryPolicy


FAST = RetryPolicy(max_retries=3, timeout=0.5, base_delay=0.001, max_delay=0.005)
URL = "https://api.example.com/data"


# ============================================================
# POLICY
# ============================================================

class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0)

        assert policy.backoff_delay(0) == 1.0
        assert policy.backoff_delay(1) == 2.0
        assert policy.backoff_delay(2) == 4.0
        assert policy.backoff_delay(3) == 8.0
        assert policy.backoff_delay(4) == 10.0

    def test_rejects_negative_retries(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    def test_rejects_zero_timeout(self):
        with pytest.raises(ValueError):
            RetryPolicy(timeout=0)


# ============================================================
# RETRY BEHAVIOUR
# ============================================================

class TestRetryingFetcher:
    """Tests for RetryingFetcher.fetch()."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, fake_transport):
        fake_transport.add("example.com", (200, {"ok": True}))
        fetcher = RetryingFetcher(fake_transport, FAST, source_name="test")

        response = await fetcher.fetch(URL)

        assert response.ok
        assert response.body == {"ok": True}
        assert response.attempts == 1

    @pytest.mark.asyncio
    async def test_two_503_then_success_uses_three_attempts(self, fake_transport):
        fake_transport.add("example.com", (503, "down"), (503, "down"), (200, {"price": 1}))
        fetcher = RetryingFetcher(fake_transport, FAST)

        response = await fetcher.fetch(URL)

        assert response.status == 200
        assert response.attempts == 3
        assert len(fake_transport.calls) == 3

    @pytest.mark.asyncio
    async def test_404_is_not_retried(self, fake_transport):
        fake_transport.add("example.com", (404, {"error": "not found"}))
        fetcher = RetryingFetcher(fake_transport, FAST)

        response = await fetcher.fetch(URL)

        assert response.status == 404
        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_429_is_returned_not_retried(self, fake_transport):
        fake_transport.add("example.com", (429, "slow down"))
        fetcher = RetryingFetcher(fake_transport, FAST)

        response = await fetcher.fetch(URL)

        assert response.status == 429
        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self, fake_transport):
        fake_transport.add(
            "example.com",
            aiohttp.ClientConnectionError("reset"),
            (200, {"ok": True}),
        )
        fetcher = RetryingFetcher(fake_transport, FAST)

        response = await fetcher.fetch(URL)

        assert response.ok
        assert len(fake_transport.calls) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_error(self, fake_transport):
        fake_transport.add("example.com", (500, "boom"))
        fetcher = RetryingFetcher(fake_transport, FAST, source_name="flaky")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await fetcher.fetch(URL)

        error = exc_info.value
        assert error.attempts == 4
        assert error.status_code == 500
        assert isinstance(error.last_error, FetchError)
        assert error.source_name == "flaky"
        assert len(fake_transport.calls) == 4

    @pytest.mark.asyncio
    async def test_max_retries_override(self, fake_transport):
        fake_transport.add("example.com", (502, "bad gateway"))
        fetcher = RetryingFetcher(fake_transport, FAST)

        with pytest.raises(RetryExhaustedError):
            await fetcher.fetch(URL, max_retries=0)

        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retryable(self, fake_transport):
        async def hang():
            await asyncio.sleep(5)
            return (200, {})

        fake_transport.add("example.com", hang, (200, {"ok": True}))
        fetcher = RetryingFetcher(fake_transport, FAST)

        response = await fetcher.fetch(URL, timeout=0.05)

        assert response.ok
        assert response.attempts == 2

    @pytest.mark.asyncio
    async def test_all_attempts_timing_out(self, fake_transport):
        async def hang():
            await asyncio.sleep(5)
            return (200, {})

        fake_transport.add("example.com", hang)
        fetcher = RetryingFetcher(fake_transport, FAST)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await fetcher.fetch(URL, timeout=0.02, max_retries=1)

        assert isinstance(exc_info.value.last_error, FetchTimeoutError)


# ============================================================
# LOADING WAITS
# ============================================================

class TestLoadingWait:
    """Tests for 503 responses carrying an estimated_time hint."""

    @pytest.mark.asyncio
    async def test_loading_does_not_consume_retry_budget(self, fake_transport):
        loading = (503, {"error": "Model is loading", "estimated_time": 0.01})
        fake_transport.add("example.com", loading, loading, (200, {"label": "positive"}))
        fetcher = RetryingFetcher(fake_transport, RetryPolicy(max_retries=0, timeout=0.5))

        response = await fetcher.fetch(URL)

        assert response.ok
        assert len(fake_transport.calls) == 3

    @pytest.mark.asyncio
    async def test_loading_waits_are_bounded(self, fake_transport):
        loading = (503, {"error": "loading", "estimated_time": 0.001})
        fake_transport.add("example.com", loading)
        policy = RetryPolicy(
            max_retries=0,
            timeout=0.5,
            max_loading_waits=2,
        )
        fetcher = RetryingFetcher(fake_transport, policy)

        with pytest.raises(RetryExhaustedError):
            await fetcher.fetch(URL)

        # two loading waits plus the final counted attempt
        assert len(fake_transport.calls) == 3


# ============================================================
# RESPONSE
# ============================================================

class TestFetchResponse:
    """Tests for FetchResponse helpers."""

    def test_raise_for_status_client_error(self):
        response = FetchResponse(status=404, body="missing", url="https://x/y?apikey=secret123")

        with pytest.raises(FetchError) as exc_info:
            response.raise_for_status("coingecko")

        assert exc_info.value.is_client_error()
        assert "secret123" not in exc_info.value.request_url

    def test_raise_for_status_ok(self):
        FetchResponse(status=204, body=None).raise_for_status()

    @pytest.mark.asyncio
    async def test_get_json_raises_on_4xx(self, fake_transport):
        fake_transport.add("example.com", (401, {"error": "unauthorized"}))
        fetcher = RetryingFetcher(fake_transport, FAST, source_name="whale_alert")

        with pytest.raises(FetchError) as exc_info:
            await fetcher.get_json(URL)

        assert exc_info.value.status_code == 401
