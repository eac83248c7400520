"""
Data Acquisition Package - Resilient multi-provider data layer.

Returns one canonical, fresh-enough answer per logical query while
respecting provider rate limits, surviving partial outages and collapsing
duplicate outbound calls.

Features:
- Per-provider token bucket rate limiting
- Retry with per-attempt timeout and exponential backoff
- TTL cache with stale-while-revalidate
- In-flight request deduplication
- Ordered provider fallback
- Dynamic source weighting
- Classified error history and provider health diagnostics

Quick Start:
    from data_acquisition import AcquisitionConfig, DataKind, create_orchestrator

    async def main():
        config = AcquisitionConfig.from_env()
        async with create_orchestrator(config) as orchestrator:
            record = await orchestrator.fetch("BTC", DataKind.PRICE)
            print(record.source, record.payload.price)

            candles = await orchestrator.fetch("ETH:4h:50", DataKind.OHLCV, timeout=15)
            print(len(candles.payload.candles))

Adding New Providers:
    1. Create a class extending ProviderAdapter
    2. Implement: build_request(), normalize() (and check_body() if needed)
    3. Add it to PROVIDER_CLASSES and give it a ProviderConfig
    4. List it in the category priority for the kinds it serves
"""

from data_acquisition.cache import TTLCache
from data_acquisition.config import (
    DEFAULT_CATEGORIES,
    DEFAULT_PROVIDERS,
    AcquisitionConfig,
    CategoryConfig,
    ProviderConfig,
    RateLimitConfig,
)
from data_acquisition.dedup import RequestDeduplicator
from data_acquisition.error_tracker import ErrorTracker, classify_error
from data_acquisition.events import EventChannel
from data_acquisition.exceptions import (
    ConfigurationError,
    DataAcquisitionError,
    FetchError,
    FetchTimeoutError,
    NormalizationError,
    ProvidersExhaustedError,
    RetryExhaustedError,
)
from data_acquisition.health import HealthReporter, ProviderLatencyTracker, ProviderRecoveryTracker
from data_acquisition.models import (
    AcquisitionEvent,
    BalanceRecord,
    CacheStatus,
    Candle,
    DataKind,
    ErrorEvent,
    ErrorType,
    EventType,
    NormalizedRecord,
    OHLCVSeries,
    PriceQuote,
    ProviderDiagnostics,
    SentimentReading,
    SourceMetrics,
    WeightConfig,
    WhaleActivity,
    WhaleTransaction,
)
from data_acquisition.orchestrator import ProviderFallbackOrchestrator, create_orchestrator
from data_acquisition.providers import PROVIDER_CLASSES, ProviderAdapter, ProviderRequest
from data_acquisition.rate_limiter import TokenBucket
from data_acquisition.retry import (
    AiohttpTransport,
    FetchResponse,
    HttpTransport,
    RetryingFetcher,
    RetryPolicy,
)
from data_acquisition.weighting import DynamicWeightingService, SourceMetricsTracker


__version__ = "1.0.0"

__all__ = [
    # Orchestration
    "ProviderFallbackOrchestrator",
    "create_orchestrator",
    # Building blocks
    "TokenBucket",
    "RetryingFetcher",
    "RetryPolicy",
    "HttpTransport",
    "AiohttpTransport",
    "FetchResponse",
    "TTLCache",
    "RequestDeduplicator",
    "SourceMetricsTracker",
    "DynamicWeightingService",
    "ErrorTracker",
    "classify_error",
    "EventChannel",
    "HealthReporter",
    "ProviderLatencyTracker",
    "ProviderRecoveryTracker",
    # Providers
    "ProviderAdapter",
    "ProviderRequest",
    "PROVIDER_CLASSES",
    # Config
    "AcquisitionConfig",
    "CategoryConfig",
    "ProviderConfig",
    "RateLimitConfig",
    "DEFAULT_CATEGORIES",
    "DEFAULT_PROVIDERS",
    # Models
    "AcquisitionEvent",
    "BalanceRecord",
    "CacheStatus",
    "Candle",
    "DataKind",
    "ErrorEvent",
    "ErrorType",
    "EventType",
    "NormalizedRecord",
    "OHLCVSeries",
    "PriceQuote",
    "ProviderDiagnostics",
    "SentimentReading",
    "SourceMetrics",
    "WeightConfig",
    "WhaleActivity",
    "WhaleTransaction",
    # Exceptions
    "DataAcquisitionError",
    "FetchError",
    "FetchTimeoutError",
    "RetryExhaustedError",
    "NormalizationError",
    "ProvidersExhaustedError",
    "ConfigurationError",
]
