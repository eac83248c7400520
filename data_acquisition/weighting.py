"""
Dynamic Source Weighting.

============================================================
SCORING
============================================================

Each source keeps EMA-style metrics in [0, 1]:
- accuracy        (nudged by prediction outcomes)
- freshness       (1 at age 0, 0 at 24h)
- quality         (response time EMA, decays on failure)
- volatility_adj  (market regime adjustment)

composite = 0.4*accuracy + 0.2*freshness + 0.2*quality + 0.2*volatility_adj

============================================================
NORMALIZATION
============================================================

1. Min-max normalize composite scores across the candidate set
   (identical scores land on the band midpoint).
2. Map each into its WeightConfig [min, max] band.
3. Re-normalize to sum 1 while keeping every weight inside its band
   (iterative clamping). A zero clamped sum falls back to equal weights.

Results are cached per sorted source set and dropped on any metric change.

============================================================
"""

import logging
import threading
from typing import Iterable, Optional

from data_acquisition.cache import TTLCache
from data_acquisition.models import SourceMetrics, WeightConfig, utcnow


logger = logging.getLogger(__name__)


DEFAULT_WEIGHT_CONFIGS: dict[str, WeightConfig] = {
    # Sentiment sources
    "hf_sentiment": WeightConfig(min=0.2, max=0.5, initial=0.4),
    "reddit": WeightConfig(min=0.15, max=0.3, initial=0.25),
    "news": WeightConfig(min=0.15, max=0.35, initial=0.25),
    "fear_greed": WeightConfig(min=0.05, max=0.15, initial=0.1),
    # Signal generation sources
    "technical": WeightConfig(min=0.2, max=0.5, initial=0.4),
    "sentiment": WeightConfig(min=0.2, max=0.4, initial=0.3),
    "whale": WeightConfig(min=0.1, max=0.3, initial=0.2),
    "ai": WeightConfig(min=0.05, max=0.2, initial=0.1),
}

FALLBACK_WEIGHT_CONFIG = WeightConfig(min=0.0, max=1.0, initial=0.1)

WEIGHTS_CACHE_TTL_SECONDS = 300.0

# Response time band for quality scoring (milliseconds)
EXCELLENT_RESPONSE_MS = 2000.0
POOR_RESPONSE_MS = 10000.0

_CLAMP_TOLERANCE = 1e-12


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class SourceMetricsTracker:
    """
    Per-source metrics plus dynamic weight calculation.

    Thread-safe: every mutation happens under one RLock so request and
    success counters are never lost.
    """

    def __init__(
        self,
        weight_configs: Optional[dict[str, WeightConfig]] = None,
        default_config: WeightConfig = FALLBACK_WEIGHT_CONFIG,
        cache_ttl_seconds: float = WEIGHTS_CACHE_TTL_SECONDS,
    ) -> None:
        self._configs = dict(DEFAULT_WEIGHT_CONFIGS if weight_configs is None else weight_configs)
        self._default_config = default_config
        self._metrics: dict[str, SourceMetrics] = {}
        self._weights_cache: TTLCache[dict[str, float]] = TTLCache(
            ttl_seconds=cache_ttl_seconds,
            max_size=256,
            name="weights",
        )
        self._lock = threading.RLock()

    # =========================================================
    # CONFIG
    # =========================================================

    def get_config(self, source: str) -> WeightConfig:
        return self._configs.get(source, self._default_config)

    @property
    def configs(self) -> dict[str, WeightConfig]:
        return dict(self._configs)

    # =========================================================
    # RECORD METHODS
    # =========================================================

    def _ensure(self, source: str) -> SourceMetrics:
        metrics = self._metrics.get(source)
        if metrics is None:
            metrics = SourceMetrics(source=source)
            self._metrics[source] = metrics
        return metrics

    def record_success(self, source: str, response_time_ms: Optional[float] = None) -> None:
        """Record a successful request; response time feeds the quality EMA."""
        with self._lock:
            metrics = self._ensure(source)
            now = utcnow()
            metrics.request_count += 1
            metrics.success_count += 1
            metrics.last_update = now
            metrics.last_success = now

            if response_time_ms is not None:
                span = POOR_RESPONSE_MS - EXCELLENT_RESPONSE_MS
                normalized = _clamp(1 - (response_time_ms - EXCELLENT_RESPONSE_MS) / span)
                metrics.quality = metrics.quality * 0.9 + normalized * 0.1

            self._weights_cache.clear()

    def record_failure(self, source: str) -> None:
        with self._lock:
            metrics = self._ensure(source)
            metrics.request_count += 1
            metrics.last_update = utcnow()
            metrics.quality *= 0.95
            self._weights_cache.clear()

    def update_accuracy(
        self,
        source: str,
        correct: bool,
        confidence: Optional[float] = None,
    ) -> None:
        """Nudge accuracy by +/-0.01, scaled by confidence when given."""
        with self._lock:
            metrics = self._ensure(source)
            adjustment = 0.01 if correct else -0.01
            if confidence is not None:
                adjustment *= confidence
            metrics.accuracy = _clamp(metrics.accuracy + adjustment)
            metrics.last_update = utcnow()
            self._weights_cache.clear()

    def update_freshness(self, source: str, data_age_ms: float) -> None:
        with self._lock:
            metrics = self._ensure(source)
            hours = max(0.0, data_age_ms) / (1000 * 60 * 60)
            metrics.freshness = max(0.0, 1 - hours / 24)
            metrics.last_update = utcnow()
            self._weights_cache.clear()

    def update_volatility(self, source: str, market_volatility: float) -> None:
        """
        Adjust for market regime.

        Technical and AI sources tend to hold up in volatile markets,
        sentiment-style sources less so.
        """
        with self._lock:
            metrics = self._ensure(source)
            if "technical" in source or "ai" in source:
                value = 0.5 + market_volatility * 0.3
            else:
                value = 0.5 - market_volatility * 0.2
            metrics.volatility_adj = _clamp(value)
            metrics.last_update = utcnow()
            self._weights_cache.clear()

    # =========================================================
    # WEIGHTS
    # =========================================================

    def calculate_weights(self, sources: Iterable[str]) -> dict[str, float]:
        """
        Compute normalized weights for `sources`.

        Returns:
            {source: weight}, summing to 1 with each weight inside its
            configured band whenever the bands allow it
        """
        unique = sorted(set(sources))
        if not unique:
            return {}

        cache_key = ",".join(unique)
        with self._lock:
            cached = self._weights_cache.get(cache_key)
            if cached.is_fresh:
                return dict(cached.value)

            scores = []
            for source in unique:
                metrics = self._metrics.get(source) or SourceMetrics(source=source)
                scores.append(metrics.composite_score())
            configs = [self.get_config(source) for source in unique]

            weights = dict(zip(unique, self._normalize(scores, configs)))
            self._weights_cache.set(cache_key, weights)

        logger.debug(f"Calculated dynamic weights: {weights}")
        return dict(weights)

    @staticmethod
    def _normalize(scores: list[float], configs: list[WeightConfig]) -> list[float]:
        count = len(scores)
        low, high = min(scores), max(scores)
        spread = high - low

        scaled = []
        for score, config in zip(scores, configs):
            position = (score - low) / spread if spread > 0 else 0.5
            scaled.append(config.min + (config.max - config.min) * position)

        constrained = [_clamp(w, c.min, c.max) for w, c in zip(scaled, configs)]
        if sum(constrained) <= 0:
            return [1 / count] * count

        total_min = sum(c.min for c in configs)
        total_max = sum(c.max for c in configs)
        if total_min > 1 + _CLAMP_TOLERANCE:
            logger.warning(
                f"Weight minimums sum to {total_min:.3f} > 1, scaling minimums down"
            )
            return [c.min / total_min for c in configs]
        if total_max < 1 - _CLAMP_TOLERANCE:
            logger.warning(
                f"Weight maximums sum to {total_max:.3f} < 1, scaling maximums up"
            )
            return [c.max / total_max for c in configs]

        return SourceMetricsTracker._fit_to_bands(constrained, configs)

    @staticmethod
    def _fit_to_bands(weights: list[float], configs: list[WeightConfig]) -> list[float]:
        """Scale free weights to sum 1, pinning any that cross a band edge."""
        result = list(weights)
        pinned: dict[int, float] = {}

        for _ in range(len(weights) + 1):
            free = [i for i in range(len(weights)) if i not in pinned]
            remaining = 1.0 - sum(pinned.values())
            free_total = sum(weights[i] for i in free)

            if not free:
                break
            if free_total <= 0:
                share = remaining / len(free)
                for i in free:
                    result[i] = _clamp(share, configs[i].min, configs[i].max)
                break

            factor = remaining / free_total
            violated = False
            for i in free:
                value = weights[i] * factor
                if value > configs[i].max + _CLAMP_TOLERANCE:
                    pinned[i] = configs[i].max
                    violated = True
                elif value < configs[i].min - _CLAMP_TOLERANCE:
                    pinned[i] = configs[i].min
                    violated = True
                else:
                    result[i] = value

            if not violated:
                break

        for i, value in pinned.items():
            result[i] = value
        return result

    # =========================================================
    # ACCESSORS
    # =========================================================

    def get_metrics(self, source: str) -> Optional[SourceMetrics]:
        with self._lock:
            return self._metrics.get(source)

    def get_all_metrics(self) -> dict[str, SourceMetrics]:
        with self._lock:
            return dict(self._metrics)

    def clear_cache(self) -> None:
        self._weights_cache.clear()

    def reset(self) -> None:
        """Drop all metrics. Intended for tests."""
        with self._lock:
            self._metrics.clear()
            self._weights_cache.clear()


# The weighting service and the metrics tracker are one object.
DynamicWeightingService = SourceMetricsTracker
