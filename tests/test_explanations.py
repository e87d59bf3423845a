"""
Tests for confidence explanations and engine metrics collectors.
"""

import pytest

from ledgersort.services.explanations import (
    as_percentage,
    describe_usage,
    explain_confidence,
    fallback_message,
    summarize_alternatives,
)
from ledgersort.services.metrics import (
    InMemoryMetricsCollector,
    LatencyTracker,
    LoggingMetricsCollector,
    build_metrics_collector,
    percentile,
)


class TestExplanations:

    def test_breakdown_lists_present_factors_in_order(self):
        breakdown = {
            "historical_success": {"value": 0.8},
            "text_match": {"value": 1.0},
            "amount_similarity": None,
        }
        assert explain_confidence(0.92, breakdown) == (
            "Confidence 92% (very high). Pattern strength: 100%; Success rate: 80%"
        )

    def test_usage_count_is_described(self):
        text = explain_confidence(0.8, {"historical_success": 0.7}, usage_count=12)
        assert text == "Confidence 80% (high). Success rate: 70%; Usage frequency: frequent (12 times)"
        assert describe_usage(1) == "Usage frequency: seen once before"
        assert describe_usage(4) == "Usage frequency: seen 4 times"

    def test_fallback_buckets(self):
        assert explain_confidence(0.9) == "High confidence (90%) - categorization very likely"
        assert fallback_message(0.6) == "Moderate confidence (60%) - categorization likely"
        assert fallback_message(0.2) == "Low confidence (20%) - manual review recommended"

    def test_percentages_are_clamped(self):
        assert as_percentage(1.7) == 100
        assert as_percentage(-0.2) == 0

    def test_alternatives_summary(self):
        assert summarize_alternatives([]) is None
        alternatives = [{"category_id": "food", "confidence": 0.61}, {"category_id": "travel", "confidence": 0.5}]
        assert summarize_alternatives(alternatives) == "Also considered: food (61%), travel (50%)"


class TestMetrics:

    def test_percentile_nearest_rank(self):
        assert percentile([], 0.5) == 0.0
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 0.50) == 50.0
        assert percentile(values, 0.95) == 95.0
        assert percentile(values, 0.99) == 99.0

    def test_latency_tracker_window(self):
        tracker = LatencyTracker(max_samples=3)
        for duration in (1.0, 2.0, 3.0, 4.0):
            tracker.record(duration)
        summary = tracker.summary()
        assert summary["count"] == 4
        assert summary["total_ms"] == 10.0
        assert summary["min_ms"] == 2.0
        tracker.reset()
        assert tracker.summary() == {"count": 0, "total_ms": 0.0}

    def test_in_memory_collector(self):
        collector = InMemoryMetricsCollector()
        collector.increment("categorize.success")
        collector.increment("categorize.success", 2)
        collector.timing("categorize", 4.0)
        snapshot = collector.snapshot()
        assert snapshot["backend"] == "memory"
        assert snapshot["counters"] == {"categorize.success": 3}
        assert snapshot["timings"]["categorize"]["count"] == 1
        collector.reset()
        assert collector.snapshot()["counters"] == {}

    def test_backend_selection(self):
        assert isinstance(build_metrics_collector("memory"), InMemoryMetricsCollector)
        logging_collector = build_metrics_collector("logging")
        assert isinstance(logging_collector, LoggingMetricsCollector)
        assert logging_collector.snapshot()["backend"] == "logging"
        with pytest.raises(ValueError):
            build_metrics_collector("statsd")
