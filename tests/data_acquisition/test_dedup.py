"""
Request Deduplicator Tests.

============================================================
PURPOSE
============================================================
Concurrent identical requests share one underlying call; cancellation
of one caller never aborts the call for the others.

============================================================
"""

import asyncio

import pytest

from data_acquisition.dedup import RequestDeduplicator


def counting_fetcher(result="value", delay=0.05, error=None):
    calls = {"count": 0}

    async def fetch():
        calls["count"] += 1
        await asyncio.sleep(delay)
        if error is not None:
            raise error
        return result

    return fetch, calls


# ============================================================
# SHARING
# ============================================================

class TestDeduplication:
    """Tests for deduped_fetch()."""

    @pytest.mark.asyncio
    async def test_five_concurrent_callers_one_call(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher("BTC=100")

        results = await asyncio.gather(*(dedup.deduped_fetch("price:BTC", fetch) for _ in range(5)))

        assert results == ["BTC=100"] * 5
        assert calls["count"] == 1
        assert dedup.total_requests == 5
        assert dedup.deduped_requests == 4
        assert dedup.deduplication_rate == pytest.approx(0.8)
        assert dedup.get_stats()["deduplication_rate_percent"] == 80.0

    @pytest.mark.asyncio
    async def test_errors_are_shared(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher(error=RuntimeError("upstream down"))

        results = await asyncio.gather(
            *(dedup.deduped_fetch("k", fetch) for _ in range(3)),
            return_exceptions=True,
        )

        assert calls["count"] == 1
        assert all(isinstance(r, RuntimeError) for r in results)

    @pytest.mark.asyncio
    async def test_entry_removed_after_completion(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher()

        await dedup.deduped_fetch("k", fetch)
        assert dedup.in_flight == 0
        assert not dedup.is_in_flight("k")

        await dedup.deduped_fetch("k", fetch)
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_different_keys_do_not_share(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher()

        await asyncio.gather(dedup.deduped_fetch("a", fetch), dedup.deduped_fetch("b", fetch))

        assert calls["count"] == 2


# ============================================================
# CANCELLATION
# ============================================================

class TestDeduplicationCancellation:
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancelling_one_caller_keeps_shared_call(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher("shared", delay=0.1)

        first = asyncio.ensure_future(dedup.deduped_fetch("k", fetch))
        second = asyncio.ensure_future(dedup.deduped_fetch("k", fetch))
        await asyncio.sleep(0.01)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        assert await second == "shared"
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_last_caller_cancel_aborts_underlying_call(self):
        dedup = RequestDeduplicator()
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(1)
            finished.set()
            return "late"

        caller = asyncio.ensure_future(dedup.deduped_fetch("k", slow))
        await asyncio.sleep(0.01)
        assert dedup.is_in_flight("k")

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.sleep(0.01)

        assert not dedup.is_in_flight("k")
        assert not finished.is_set()

    @pytest.mark.asyncio
    async def test_wait_for_timeout_on_one_caller(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher("shared", delay=0.1)

        patient = asyncio.ensure_future(dedup.deduped_fetch("k", fetch))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(dedup.deduped_fetch("k", fetch), timeout=0.01)

        assert await patient == "shared"
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_caller_right_after_abort_starts_fresh_call(self):
        dedup = RequestDeduplicator()
        fetch, calls = counting_fetcher("fresh", delay=0.05)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(dedup.deduped_fetch("k", fetch), timeout=0.01)

        assert not dedup.is_in_flight("k")
        assert await dedup.deduped_fetch("k", fetch) == "fresh"
        assert calls["count"] == 2
        assert dedup.deduped_requests == 0
