"""
Shared fixtures for data acquisition tests.

HTTP is faked at the HttpTransport seam: routes match on a URL fragment and
replay scripted (status, body) pairs or raise scripted exceptions.
"""

import asyncio
import inspect
from typing import Any, Mapping, Optional

import pytest

from data_acquisition.config import AcquisitionConfig, ProviderConfig, RateLimitConfig
from data_acquisition.retry import FetchResponse, HttpTransport


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(HttpTransport):
    """
    Scripted transport.

    add(fragment, *items): each item is (status, body), an exception
    instance, or a zero-arg coroutine function returning (status, body).
    Items are consumed in order; the last one repeats.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self._routes: list[tuple[str, list[Any]]] = []
        self.closed = False

    def add(self, fragment: str, *items: Any) -> "FakeTransport":
        self._routes.append((fragment, list(items)))
        return self

    def calls_to(self, fragment: str) -> int:
        return sum(1 for call in self.calls if fragment in call["url"])

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Any] = None,
    ) -> FetchResponse:
        self.calls.append({
            "method": method,
            "url": url,
            "params": dict(params or {}),
            "headers": dict(headers or {}),
        })
        if self.delay:
            await asyncio.sleep(self.delay)

        for fragment, items in self._routes:
            if fragment not in url:
                continue
            item = items.pop(0) if len(items) > 1 else items[0]
            if inspect.iscoroutinefunction(item):
                item = await item()
            if isinstance(item, BaseException):
                raise item
            status, body = item
            return FetchResponse(status=status, body=body, url=url)

        raise AssertionError(f"Unexpected request to {url}")

    async def close(self) -> None:
        self.closed = True


def fast_provider(name: str, base_url: str, retries: int = 2) -> ProviderConfig:
    """Provider config with generous rate limits and millisecond backoff."""
    return ProviderConfig(
        name=name,
        base_url=base_url,
        rate_limit=RateLimitConfig(capacity=100, refill_rate=100.0),
        cache_ttl_seconds=30.0,
        retries=retries,
        timeout_seconds=1.0,
        backoff_base_seconds=0.001,
        backoff_max_seconds=0.005,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fast_config() -> AcquisitionConfig:
    """Default categories with every provider on fast test settings."""
    config = AcquisitionConfig()
    config.providers = {
        name: fast_provider(name, provider.base_url)
        for name, provider in config.providers.items()
    }
    return config


@pytest.fixture
def make_provider_config():
    return fast_provider
