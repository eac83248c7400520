"""
Retrying HTTP fetcher.

Wraps one logical HTTP call with:
- a per-attempt timeout (the attempt is cancelled when it expires)
- exponential backoff between attempts, never after the last one
- retry on 5xx / connection errors / timeouts only; 4xx is returned at once
- a separate, bounded wait loop for "resource is loading" 503 responses
  that carry an `estimated_time` hint

The network itself sits behind HttpTransport so the policy can be exercised
without sockets.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import aiohttp

from data_acquisition.exceptions import (
    FetchError,
    FetchTimeoutError,
    RetryExhaustedError,
)
from data_acquisition.logging_utils import mask_headers, mask_params, mask_url


logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """Decoded HTTP response."""
    status: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    latency_ms: float = 0.0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def raise_for_status(self, source_name: Optional[str] = None) -> None:
        """Raise FetchError for any non-2xx status."""
        if self.ok:
            return
        raise FetchError(
            message=f"HTTP {self.status}",
            source_name=source_name,
            status_code=self.status,
            response_body=str(self.body)[:1000] if self.body is not None else None,
            request_url=mask_url(self.url),
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry/backoff parameters. Durations are seconds."""
    max_retries: int = 3
    timeout: float = 10.0
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_loading_waits: int = 5
    default_loading_wait: float = 10.0
    max_loading_wait: float = 120.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must be >= 0")

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt `attempt` (0-indexed)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


# =============================================================
# TRANSPORTS
# =============================================================


class HttpTransport(ABC):
    """Performs exactly one HTTP exchange. No retries, no timeouts."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Any] = None,
    ) -> FetchResponse:
        pass

    async def close(self) -> None:
        """Release resources."""


class AiohttpTransport(HttpTransport):
    """aiohttp-backed transport sharing one ClientSession."""

    # Backstop only; per-attempt deadlines are enforced by RetryingFetcher.
    SESSION_TIMEOUT = 60.0

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: str = "DataAcquisition/1.0",
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._user_agent = user_agent

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.SESSION_TIMEOUT),
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._user_agent,
                },
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Any] = None,
    ) -> FetchResponse:
        session = await self._get_session()
        start = time.monotonic()
        async with session.request(
            method,
            url,
            params=dict(params) if params else None,
            headers=dict(headers) if headers else None,
            json=json_body,
        ) as response:
            text = await response.text()
            latency_ms = (time.monotonic() - start) * 1000
            return FetchResponse(
                status=response.status,
                body=_decode_body(text, response.content_type),
                headers=dict(response.headers),
                url=str(response.url),
                latency_ms=latency_ms,
            )

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


def _decode_body(text: str, content_type: str) -> Any:
    stripped = text.lstrip()
    if "json" in (content_type or "") or stripped.startswith(("{", "[")):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


# =============================================================
# RETRYING FETCHER
# =============================================================


class RetryingFetcher:
    """
    Timeout + exponential backoff around an HttpTransport.

    Usage:
        fetcher = RetryingFetcher(AiohttpTransport(), RetryPolicy(max_retries=3))
        response = await fetcher.fetch("https://api.example.com/x")
    """

    def __init__(
        self,
        transport: HttpTransport,
        policy: Optional[RetryPolicy] = None,
        source_name: str = "",
    ) -> None:
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._source_name = source_name

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Any] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> FetchResponse:
        """
        Perform the request, retrying transient failures.

        Returns:
            The final response for 2xx-4xx statuses (4xx after one attempt).

        Raises:
            RetryExhaustedError: every budgeted attempt failed
        """
        retries = self._policy.max_retries if max_retries is None else max_retries
        timeout = self._policy.timeout if timeout is None else timeout
        safe_url = mask_url(url)
        name = self._source_name or "http"

        last_error: Optional[FetchError] = None
        attempt = 0
        total_attempts = 0
        loading_waits = 0

        while attempt <= retries:
            total_attempts += 1
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    f"[{name}] {method} {safe_url} params={mask_params(params)} "
                    f"headers={mask_headers(headers)} (attempt {total_attempts})"
                )
            try:
                response = await asyncio.wait_for(
                    self._transport.request(
                        method,
                        url,
                        params=params,
                        headers=headers,
                        json_body=json_body,
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                last_error = FetchTimeoutError(
                    message=f"Request timeout after {timeout}s",
                    source_name=self._source_name or None,
                    timeout_seconds=timeout,
                    request_url=safe_url,
                    original_error=e,
                )
            except (aiohttp.ClientError, OSError) as e:
                last_error = FetchError(
                    message=f"Connection error: {e}",
                    source_name=self._source_name or None,
                    request_url=safe_url,
                    original_error=e,
                )
            else:
                response.attempts = total_attempts
                if response.status < 500:
                    return response

                loading_wait = self._loading_wait(response)
                if loading_wait is not None and loading_waits < self._policy.max_loading_waits:
                    loading_waits += 1
                    logger.info(
                        f"[{name}] Resource loading, waiting {loading_wait:.1f}s "
                        f"({loading_waits}/{self._policy.max_loading_waits})"
                    )
                    await asyncio.sleep(loading_wait)
                    continue

                last_error = FetchError(
                    message=f"HTTP {response.status}",
                    source_name=self._source_name or None,
                    status_code=response.status,
                    response_body=str(response.body)[:1000] if response.body is not None else None,
                    request_url=safe_url,
                )

            if attempt < retries:
                delay = self._policy.backoff_delay(attempt)
                logger.warning(
                    f"[{name}] {last_error.message} for {safe_url}, "
                    f"retrying in {delay:.2f}s (attempt {attempt + 1}/{retries + 1})"
                )
                await asyncio.sleep(delay)
            attempt += 1

        raise RetryExhaustedError(
            message=f"Failed after {retries + 1} attempts: {last_error.message if last_error else 'unknown error'}",
            source_name=self._source_name or None,
            attempts=total_attempts,
            last_error=last_error,
            request_url=safe_url,
        )

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """Fetch and return the decoded body, raising FetchError on non-2xx."""
        response = await self.fetch(url, **kwargs)
        response.raise_for_status(self._source_name or None)
        return response.body

    def _loading_wait(self, response: FetchResponse) -> Optional[float]:
        if response.status != 503 or not isinstance(response.body, dict):
            return None
        error = response.body.get("error")
        if not isinstance(error, str) or "loading" not in error.lower():
            return None
        try:
            hint = float(response.body.get("estimated_time") or self._policy.default_loading_wait)
        except (TypeError, ValueError):
            hint = self._policy.default_loading_wait
        return min(max(hint, 0.0), self._policy.max_loading_wait)
