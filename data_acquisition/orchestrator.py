"""
Provider Fallback Orchestrator.

============================================================
FLOW
============================================================

fetch(key, kind)
  -> cache FRESH: return
  -> cache STALE: return + detached revalidation (deduplicated)
  -> MISS: deduplicate, then for each provider in priority order:
       token bucket wait -> retrying HTTP call -> normalize
       success: cache, record metrics/latency/recovery, return
       failure: record failure + ErrorEvent, try next provider
  -> every provider failed: ProvidersExhaustedError

Provider failures never reach the caller individually. Only chain
exhaustion, or the caller's own deadline (FetchTimeoutError), does.

============================================================
"""

import asyncio
import logging
import time
from typing import Any, Mapping, Optional, Union

from data_acquisition.cache import TTLCache
from data_acquisition.config import AcquisitionConfig
from data_acquisition.dedup import RequestDeduplicator
from data_acquisition.error_tracker import ErrorTracker
from data_acquisition.events import EventChannel
from data_acquisition.exceptions import (
    FetchTimeoutError,
    NormalizationError,
    ProvidersExhaustedError,
)
from data_acquisition.health import HealthReporter, ProviderLatencyTracker, ProviderRecoveryTracker
from data_acquisition.models import (
    AcquisitionEvent,
    DataKind,
    EventType,
    NormalizedRecord,
    ProviderDiagnostics,
)
from data_acquisition.providers import PROVIDER_CLASSES, ProviderAdapter
from data_acquisition.rate_limiter import TokenBucket
from data_acquisition.retry import AiohttpTransport, HttpTransport, RetryingFetcher
from data_acquisition.weighting import SourceMetricsTracker


logger = logging.getLogger(__name__)


class ProviderFallbackOrchestrator:
    """
    Single entry point for acquiring normalized data.

    Usage:
        async with create_orchestrator(AcquisitionConfig.from_env()) as orchestrator:
            record = await orchestrator.fetch("BTC", DataKind.PRICE)
    """

    def __init__(
        self,
        config: Optional[AcquisitionConfig] = None,
        transport: Optional[HttpTransport] = None,
        metrics: Optional[SourceMetricsTracker] = None,
        error_tracker: Optional[ErrorTracker] = None,
        channel: Optional[EventChannel] = None,
        clock=time.monotonic,
    ) -> None:
        self.config = config or AcquisitionConfig()
        self._transport = transport or AiohttpTransport()
        self._owns_transport = transport is None
        self._clock = clock

        self.channel = channel or EventChannel()
        self.metrics = metrics or SourceMetricsTracker()
        self.errors = error_tracker or ErrorTracker(
            max_errors=self.config.max_errors,
            channel=self.channel,
        )
        self.latency = ProviderLatencyTracker()
        self.recovery = ProviderRecoveryTracker()
        self.health = HealthReporter(self.latency, self.recovery, self.errors)
        self.dedup = RequestDeduplicator()

        self._adapters: dict[str, ProviderAdapter] = {}
        self._limiters: dict[str, TokenBucket] = {}
        self._fetchers: dict[str, RetryingFetcher] = {}
        self._caches: dict[DataKind, TTLCache[NormalizedRecord]] = {}
        self._background_tasks: set[asyncio.Task] = set()
        self._closed = False

        self._requests = 0
        self._cache_hits = 0
        self._stale_hits = 0
        self._misses = 0
        self._fallbacks = 0
        self._exhausted = 0

    # =========================================================
    # REGISTRATION
    # =========================================================

    def register(
        self,
        adapter: ProviderAdapter,
        limiter: Optional[TokenBucket] = None,
        fetcher: Optional[RetryingFetcher] = None,
    ) -> None:
        """Add a provider with its own token bucket and retrying fetcher."""
        name = adapter.name
        if name in self._adapters:
            logger.warning(f"[{name}] Replacing already registered provider")

        rate = adapter.config.rate_limit
        self._adapters[name] = adapter
        self._limiters[name] = limiter or TokenBucket(rate.capacity, rate.refill_rate, name=name)
        self._fetchers[name] = fetcher or RetryingFetcher(
            self._transport,
            adapter.config.retry_policy(),
            source_name=name,
        )
        kinds = ", ".join(sorted(k.value for k in adapter.supported_kinds))
        logger.info(f"[{name}] Registered provider ({kinds})")

    @property
    def adapters(self) -> dict[str, ProviderAdapter]:
        return dict(self._adapters)

    def providers_for(self, kind: Union[DataKind, str]) -> list[ProviderAdapter]:
        """
        Providers for a kind in fallback order.

        Configured priority comes first; registered providers missing from
        the priority list follow in registration order.
        """
        kind = DataKind(kind)
        ordered: list[str] = list(self.config.category(kind).priority)
        ordered += [name for name in self._adapters if name not in ordered]

        result = []
        for name in ordered:
            adapter = self._adapters.get(name)
            if adapter is not None and adapter.supports(kind) and adapter.is_available:
                result.append(adapter)
        return result

    def cache_for(self, kind: DataKind) -> TTLCache[NormalizedRecord]:
        cache = self._caches.get(kind)
        if cache is None:
            category = self.config.category(kind)
            cache = TTLCache(
                ttl_seconds=self.config.cache_ttl_for(kind),
                max_size=min(category.max_size, self.config.cache_max_size),
                stale_while_revalidate=category.stale_while_revalidate,
                max_stale_seconds=category.max_stale_seconds,
                clock=self._clock,
                name=kind.value,
            )
            self._caches[kind] = cache
        return cache

    # =========================================================
    # FETCH
    # =========================================================

    async def fetch(
        self,
        key: str,
        kind: Union[DataKind, str],
        timeout: Optional[float] = None,
        force_refresh: bool = False,
    ) -> NormalizedRecord:
        """
        Return one normalized record for (key, kind).

        Args:
            key: Query key, e.g. "BTC", "BTC:1h:100", "eth:0xabc..."
            kind: Data kind
            timeout: Overall deadline in seconds (cancels in-flight work)
            force_refresh: Skip the cache lookup

        Raises:
            ProvidersExhaustedError: every provider failed
            FetchTimeoutError: the overall deadline expired
            ValueError: empty key or unknown kind
        """
        if self._closed:
            raise RuntimeError("Orchestrator is closed")
        kind = DataKind(kind)
        key = key.strip()
        if not key:
            raise ValueError("key must not be empty")

        timeout = self.config.default_fetch_timeout_seconds if timeout is None else timeout
        if timeout is None:
            return await self._fetch(key, kind, force_refresh)

        try:
            return await asyncio.wait_for(self._fetch(key, kind, force_refresh), timeout)
        except asyncio.TimeoutError as e:
            error = FetchTimeoutError(
                message=f"Fetch for {kind.value}:{key} exceeded {timeout}s",
                timeout_seconds=timeout,
                original_error=e,
                context={"key": key, "kind": kind.value},
            )
            self.errors.track(error, "orchestrator", f"fetch_{kind.value}", key=key)
            raise error from e

    async def _fetch(self, key: str, kind: DataKind, force_refresh: bool) -> NormalizedRecord:
        self._requests += 1
        cache_key = f"{kind.value}:{key}"
        cache = self.cache_for(kind)

        if not force_refresh:
            lookup = cache.get(cache_key)
            if lookup.is_fresh:
                self._cache_hits += 1
                logger.debug(f"Cache hit for {cache_key} (age {lookup.age_seconds:.1f}s)")
                self._publish(EventType.CACHE_HIT, key, kind, age_seconds=lookup.age_seconds)
                return lookup.value
            if lookup.should_revalidate:
                self._stale_hits += 1
                logger.debug(f"Serving stale {cache_key} (age {lookup.age_seconds:.1f}s), revalidating")
                self._publish(EventType.CACHE_STALE, key, kind, age_seconds=lookup.age_seconds)
                self._revalidate(cache_key, key, kind)
                return lookup.value

        self._misses += 1
        return await self.dedup.deduped_fetch(
            cache_key,
            lambda: self._run_chain(key, kind, cache_key),
        )

    def _revalidate(self, cache_key: str, key: str, kind: DataKind) -> None:
        if self.dedup.is_in_flight(cache_key):
            return
        task = asyncio.ensure_future(self._background_refresh(cache_key, key, kind))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_refresh(self, cache_key: str, key: str, kind: DataKind) -> None:
        try:
            await self.dedup.deduped_fetch(
                cache_key,
                lambda: self._run_chain(key, kind, cache_key),
            )
        except ProvidersExhaustedError as e:
            logger.warning(f"Background refresh of {cache_key} failed: {e.message}")
        except Exception:
            logger.exception(f"Background refresh of {cache_key} crashed")

    async def _run_chain(self, key: str, kind: DataKind, cache_key: str) -> NormalizedRecord:
        action = f"fetch_{kind.value}"
        providers = self.providers_for(kind)
        tried: list[str] = []
        reasons: dict[str, str] = {}

        for index, adapter in enumerate(providers):
            name = adapter.name
            if index > 0:
                self._fallbacks += 1
                logger.info(f"[{name}] Falling back for {cache_key} after {tried[-1]} failed")
                self._publish(EventType.FALLBACK, key, kind, name, previous=tried[-1])
            tried.append(name)

            recovering = self.recovery.consecutive_failures(name) > 0
            if recovering:
                self.errors.track_recovery_attempt(name, action)

            try:
                record, latency_ms = await self._attempt(adapter, key, kind)
            except Exception as e:
                reasons[name] = str(getattr(e, "message", None) or e) or e.__class__.__name__
                self._on_failure(adapter, key, kind, e)
                continue

            self._on_success(adapter, record, latency_ms, recovering)
            self.cache_for(kind).set(cache_key, record)
            return record

        self._exhausted += 1
        if providers:
            message = f"All {len(tried)} providers failed for {cache_key}"
        else:
            message = f"No providers available for {kind.value}"
        logger.error(f"{message}: {reasons}" if reasons else message)
        self._publish(EventType.EXHAUSTED, key, kind, tried=list(tried))
        raise ProvidersExhaustedError(
            message=message,
            key=key,
            kind=kind.value,
            tried_providers=tried,
            reasons=reasons,
        )

    async def _attempt(
        self,
        adapter: ProviderAdapter,
        key: str,
        kind: DataKind,
    ) -> tuple[NormalizedRecord, float]:
        name = adapter.name
        # Reject unsupported keys before spending a token
        adapter.build_request(key, kind)

        await self._limiters[name].wait()
        start = time.monotonic()
        raw = await adapter.raw_fetch(key, kind, self._fetchers[name])
        latency_ms = (time.monotonic() - start) * 1000

        record = adapter.normalize(raw, key, kind)
        if record.is_empty():
            raise NormalizationError(
                message=f"Empty {kind.value} payload",
                source_name=name,
                raw_data=raw,
            )
        return record, latency_ms

    def _on_success(
        self,
        adapter: ProviderAdapter,
        record: NormalizedRecord,
        latency_ms: float,
        recovering: bool,
    ) -> None:
        name = adapter.name
        self.metrics.record_success(name, latency_ms)
        self.metrics.update_freshness(name, record.data_age_ms())
        self.latency.record(name, latency_ms)
        self.recovery.record_success(name)
        if recovering:
            self.errors.track_recovery(name, f"fetch_{record.kind.value}")

        logger.debug(f"[{name}] Served {record.kind.value}:{record.key} in {latency_ms:.0f}ms")
        self._publish(
            EventType.PROVIDER_SUCCESS,
            record.key,
            record.kind,
            name,
            latency_ms=round(latency_ms, 2),
        )

    def _on_failure(
        self,
        adapter: ProviderAdapter,
        key: str,
        kind: DataKind,
        error: Exception,
    ) -> None:
        name = adapter.name
        self.metrics.record_failure(name)
        self.recovery.record_failure(name)
        event = self.errors.track(
            error,
            component=name,
            action=f"fetch_{kind.value}",
            key=key,
            kind=kind.value,
        )
        self._publish(
            EventType.PROVIDER_FAILURE,
            key,
            kind,
            name,
            error_type=event.type.value,
            error_id=event.id,
        )

    def _publish(
        self,
        event_type: EventType,
        key: Optional[str] = None,
        kind: Optional[DataKind] = None,
        provider: Optional[str] = None,
        **detail: Any,
    ) -> None:
        self.channel.publish(AcquisitionEvent(
            type=event_type,
            key=key,
            kind=kind,
            provider=provider,
            detail=detail,
        ))

    # =========================================================
    # DIAGNOSTICS
    # =========================================================

    def get_weights(self, kind: Union[DataKind, str]) -> dict[str, float]:
        """Dynamic weights across the providers currently serving `kind`."""
        names = [adapter.name for adapter in self.providers_for(kind)]
        return self.metrics.calculate_weights(names)

    def get_provider_health(self, name: str) -> ProviderDiagnostics:
        if name not in self._adapters:
            raise KeyError(name)
        return self.health.diagnostics(name)

    def get_all_health(self) -> dict[str, ProviderDiagnostics]:
        return self.health.all_diagnostics(self._adapters)

    def get_stats(self) -> dict[str, Any]:
        return {
            "requests": self._requests,
            "cache_hits": self._cache_hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "fallbacks": self._fallbacks,
            "exhausted": self._exhausted,
            "background_refreshes": len(self._background_tasks),
            "deduplication": self.dedup.get_stats(),
            "caches": {kind.value: cache.get_stats() for kind, cache in self._caches.items()},
            "rate_limiters": {name: bucket.get_status() for name, bucket in self._limiters.items()},
            "errors": {
                "total_errors": len(self.errors),
                "recovery_rate": round(self.errors.recovery_rate(), 2),
            },
            "events": self.channel.get_stats(),
            "providers": self.health.summary(self._adapters),
        }

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def close(self) -> None:
        """Cancel background refreshes and release the HTTP transport."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.channel.close()
        if self._owns_transport:
            await self._transport.close()
        logger.info("Orchestrator closed")

    async def __aenter__(self) -> "ProviderFallbackOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create_orchestrator(
    config: Optional[AcquisitionConfig] = None,
    transport: Optional[HttpTransport] = None,
    provider_classes: Optional[Mapping[str, type[ProviderAdapter]]] = None,
    **kwargs: Any,
) -> ProviderFallbackOrchestrator:
    """
    Build an orchestrator with one adapter per configured provider.

    Disabled providers and providers missing a required API key are
    skipped with a log line.
    """
    config = config or AcquisitionConfig()
    config.validate()
    classes = PROVIDER_CLASSES if provider_classes is None else provider_classes

    orchestrator = ProviderFallbackOrchestrator(config=config, transport=transport, **kwargs)
    for name, provider_config in config.providers.items():
        adapter_class = classes.get(name)
        if adapter_class is None:
            logger.warning(f"[{name}] No adapter registered for provider, skipping")
            continue
        adapter = adapter_class(provider_config)
        if not provider_config.enabled:
            logger.info(f"[{name}] Provider disabled, skipping")
            continue
        if not adapter.is_available:
            logger.info(f"[{name}] Provider requires an API key, skipping")
            continue
        orchestrator.register(adapter)
    return orchestrator
