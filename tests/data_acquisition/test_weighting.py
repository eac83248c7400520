"""
Dynamic Weighting Tests.

============================================================
PURPOSE
============================================================
Metric updates and weight normalization of SourceMetricsTracker.

============================================================
"""

import threading

import pytest

from data_acquisition.models import WeightConfig
from data_acquisition.weighting import (
    DEFAULT_WEIGHT_CONFIGS,
    DynamicWeightingService,
    SourceMetricsTracker,
)


BOUNDED = {
    "a": WeightConfig(min=0.2, max=0.5, initial=0.3),
    "b": WeightConfig(min=0.2, max=0.5, initial=0.3),
    "c": WeightConfig(min=0.2, max=0.5, initial=0.3),
}


# ============================================================
# METRICS
# ============================================================

class TestMetricUpdates:
    """Tests for record_* and update_* methods."""

    def test_metrics_created_with_neutral_defaults(self):
        tracker = SourceMetricsTracker()
        tracker.record_failure("binance")

        metrics = tracker.get_metrics("binance")
        assert metrics.accuracy == 0.5
        assert metrics.freshness == 1.0
        assert metrics.volatility_adj == 0.5
        assert metrics.request_count == 1
        assert metrics.success_count == 0

    def test_record_success_updates_quality(self):
        tracker = SourceMetricsTracker()
        tracker.record_success("fast", response_time_ms=500)
        tracker.record_success("slow", response_time_ms=20000)

        # fast: 0.8*0.9 + 1.0*0.1, slow: 0.8*0.9 + 0.0*0.1
        assert tracker.get_metrics("fast").quality == pytest.approx(0.82)
        assert tracker.get_metrics("slow").quality == pytest.approx(0.72)
        assert tracker.get_metrics("fast").last_success is not None

    def test_record_failure_decays_quality(self):
        tracker = SourceMetricsTracker()
        tracker.record_failure("x")

        assert tracker.get_metrics("x").quality == pytest.approx(0.76)

    def test_accuracy_is_clamped(self):
        tracker = SourceMetricsTracker()
        for _ in range(100):
            tracker.update_accuracy("x", correct=True)

        assert tracker.get_metrics("x").accuracy == 1.0

    def test_accuracy_scaled_by_confidence(self):
        tracker = SourceMetricsTracker()
        tracker.update_accuracy("x", correct=False, confidence=0.5)

        assert tracker.get_metrics("x").accuracy == pytest.approx(0.495)

    def test_freshness_decays_over_a_day(self):
        tracker = SourceMetricsTracker()
        tracker.update_freshness("x", data_age_ms=12 * 60 * 60 * 1000)
        assert tracker.get_metrics("x").freshness == pytest.approx(0.5)

        tracker.update_freshness("x", data_age_ms=48 * 60 * 60 * 1000)
        assert tracker.get_metrics("x").freshness == 0.0

    def test_volatility_favours_technical_sources(self):
        tracker = SourceMetricsTracker()
        tracker.update_volatility("technical", 1.0)
        tracker.update_volatility("reddit", 1.0)

        assert tracker.get_metrics("technical").volatility_adj == pytest.approx(0.8)
        assert tracker.get_metrics("reddit").volatility_adj == pytest.approx(0.3)

    def test_concurrent_updates_are_not_lost(self):
        tracker = SourceMetricsTracker()

        def worker():
            for _ in range(500):
                tracker.record_success("x")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.get_metrics("x").request_count == 2000
        assert tracker.get_metrics("x").success_count == 2000

    def test_reset(self):
        tracker = SourceMetricsTracker()
        tracker.record_success("x")
        tracker.reset()

        assert tracker.get_all_metrics() == {}


# ============================================================
# WEIGHTS
# ============================================================

class TestCalculateWeights:
    """Tests for calculate_weights()."""

    def test_identical_sources_split_evenly_within_bounds(self):
        tracker = SourceMetricsTracker(weight_configs=BOUNDED)

        weights = tracker.calculate_weights(["a", "b"])

        assert sum(weights.values()) == pytest.approx(1.0, abs=1e-9)
        for weight in weights.values():
            assert 0.2 - 1e-9 <= weight <= 0.5 + 1e-9
        assert weights["a"] == pytest.approx(weights["b"])

    def test_better_source_gets_more_weight(self):
        tracker = SourceMetricsTracker(weight_configs=BOUNDED)
        for _ in range(20):
            tracker.update_accuracy("a", correct=True)
            tracker.update_accuracy("c", correct=False)

        weights = tracker.calculate_weights(["a", "b", "c"])

        assert sum(weights.values()) == pytest.approx(1.0, abs=1e-9)
        assert weights["a"] > weights["b"] > weights["c"]
        for weight in weights.values():
            assert 0.2 - 1e-9 <= weight <= 0.5 + 1e-9

    def test_default_signal_configs_respected(self):
        tracker = SourceMetricsTracker()
        tracker.update_accuracy("technical", correct=True)
        tracker.update_accuracy("ai", correct=False)

        names = ["technical", "sentiment", "whale", "ai"]
        weights = tracker.calculate_weights(names)

        assert sum(weights.values()) == pytest.approx(1.0, abs=1e-9)
        for name in names:
            config = DEFAULT_WEIGHT_CONFIGS[name]
            assert config.min - 1e-9 <= weights[name] <= config.max + 1e-9

    def test_unknown_sources_use_default_band(self):
        tracker = SourceMetricsTracker()

        weights = tracker.calculate_weights(["coingecko", "binance", "kraken"])

        assert sum(weights.values()) == pytest.approx(1.0, abs=1e-9)
        assert weights["coingecko"] == pytest.approx(1 / 3)

    def test_infeasible_minimums_are_scaled(self):
        configs = {
            "x": WeightConfig(min=0.7, max=0.9, initial=0.8),
            "y": WeightConfig(min=0.6, max=0.9, initial=0.7),
        }
        tracker = SourceMetricsTracker(weight_configs=configs)

        weights = tracker.calculate_weights(["x", "y"])

        assert sum(weights.values()) == pytest.approx(1.0)
        assert weights["x"] == pytest.approx(0.7 / 1.3)

    def test_zero_bands_fall_back_to_equal(self):
        configs = {
            "x": WeightConfig(min=0.0, max=0.0, initial=0.0),
            "y": WeightConfig(min=0.0, max=0.0, initial=0.0),
        }
        tracker = SourceMetricsTracker(weight_configs=configs)

        assert tracker.calculate_weights(["x", "y"]) == {"x": 0.5, "y": 0.5}

    def test_empty_sources(self):
        assert SourceMetricsTracker().calculate_weights([]) == {}

    def test_weights_cached_until_metric_changes(self):
        tracker = SourceMetricsTracker(weight_configs=BOUNDED)
        first = tracker.calculate_weights(["a", "b", "c"])
        assert tracker.calculate_weights(["c", "b", "a"]) == first

        for _ in range(10):
            tracker.update_accuracy("a", correct=True)

        assert tracker.calculate_weights(["a", "b", "c"]) != first

    def test_alias(self):
        assert DynamicWeightingService is SourceMetricsTracker
