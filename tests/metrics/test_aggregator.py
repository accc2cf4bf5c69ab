# tests/metrics/test_aggregator.py
"""
Tests for metric aggregation and A/B comparison.

Covers:
- Nearest-rank percentiles
- Streaming latency histogram
- Insufficient-data handling
- Feedback rates over reported values only
- Composite score, confidence and recommendations
"""

import pytest

from chuk_prompt_experiments.metrics import (
    CompositeWeights,
    FeedbackMetrics,
    GenerationMetric,
    LatencyHistogram,
    PromptVersion,
    aggregate_metrics,
    calculate_confidence,
    compare_variants,
    composite_score,
    percentile,
    recommend,
)
from chuk_prompt_experiments.metrics.models import ExecutionMetrics, QualityMetrics


def _record(
    variant_id: str = "v1",
    latency_ms: float = 1000,
    quality: float = 0.8,
    rating: int | None = None,
    **feedback,
) -> GenerationMetric:
    return GenerationMetric(
        prompt_version=PromptVersion(content_type="Roadmap", variant_id=variant_id),
        execution=ExecutionMetrics(latency_ms=latency_ms, input_tokens=100, output_tokens=50),
        quality=QualityMetrics(quality_score=quality, quality_grade="A"),
        feedback=FeedbackMetrics(rating=rating, **feedback),
    )


class TestPercentile:
    def test_nearest_rank(self):
        values = [float(v) for v in range(1, 11)]
        assert percentile(values, 50) == 5
        assert percentile(values, 95) == 10
        assert percentile(values, 99) == 10
        assert percentile(values, 0) == 1

    def test_empty(self):
        assert percentile([], 50) == 0.0

    def test_single_value(self):
        assert percentile([42.0], 99) == 42.0


class TestLatencyHistogram:
    def test_empty(self):
        histogram = LatencyHistogram()
        assert histogram.percentile(50) is None
        assert histogram.snapshot("v1").count == 0

    def test_single_observation(self):
        histogram = LatencyHistogram()
        histogram.observe(120)
        assert histogram.percentile(50) == 120
        assert histogram.percentile(99) == 120

    def test_percentiles_ordered_and_bounded(self):
        histogram = LatencyHistogram()
        for latency in [30, 80, 120, 400, 800, 900, 1500, 3000, 7000, 45000, 90000]:
            histogram.observe(latency)

        snapshot = histogram.snapshot("v1")
        assert snapshot.min_ms <= snapshot.p50_ms <= snapshot.p95_ms <= snapshot.p99_ms <= snapshot.max_ms
        assert snapshot.max_ms == 90000
        assert snapshot.count == 11
        assert sum(b.count for b in snapshot.buckets) == 11
        # Values past the last finite bound land in the overflow bucket
        assert snapshot.buckets[-1].count == 1

    def test_mean(self):
        histogram = LatencyHistogram()
        for latency in (100, 200, 300):
            histogram.observe(latency)
        assert histogram.mean == pytest.approx(200)


class TestAggregate:
    def test_empty_is_insufficient(self):
        stats = aggregate_metrics([], min_samples=1)
        assert stats.insufficient is True
        assert stats.sample_count == 0

    def test_below_min_samples(self):
        stats = aggregate_metrics([_record() for _ in range(4)], min_samples=5)
        assert stats.insufficient is True
        assert stats.sample_count == 4
        assert stats.min_required == 5
        assert stats.execution is None

    def test_execution_stats(self):
        records = [_record(latency_ms=latency) for latency in range(100, 1100, 100)]
        stats = aggregate_metrics(records, min_samples=10)

        assert stats.insufficient is False
        assert stats.execution.avg_latency_ms == pytest.approx(550)
        assert stats.execution.p50_latency_ms == 500
        assert stats.execution.p95_latency_ms == 1000
        assert stats.execution.min_latency_ms == 100
        assert stats.execution.max_latency_ms == 1000
        assert stats.execution.avg_output_tokens == 50
        assert stats.time_range.start <= stats.time_range.end

    def test_quality_stats(self):
        records = [_record(quality=q) for q in (0.6, 0.8, 1.0)]
        records[0].quality.validation_passed = False
        stats = aggregate_metrics(records, min_samples=1)

        assert stats.quality.avg_score == pytest.approx(0.8)
        assert stats.quality.success_rate == pytest.approx(2 / 3)
        assert stats.quality.grade_distribution == {"A": 3}

    def test_feedback_rates_use_reported_values(self):
        records = [
            _record(rating=5, was_regenerated=True),
            _record(rating=3, was_regenerated=False),
            _record(),
            _record(),
        ]
        stats = aggregate_metrics(records, min_samples=1)

        assert stats.feedback_count == 2
        assert stats.feedback.avg_rating == pytest.approx(4.0)
        assert stats.feedback.positive_rate == pytest.approx(0.5)
        assert stats.feedback.regenerate_rate == pytest.approx(0.5)
        assert stats.feedback.export_rate is None
        assert stats.feedback.thumbs_up_rate is None

    def test_no_feedback(self):
        stats = aggregate_metrics([_record()], min_samples=1)
        assert stats.feedback_count == 0
        assert stats.feedback.avg_rating is None


class TestCompositeScore:
    def test_formula(self):
        stats = aggregate_metrics([_record(latency_ms=1000, quality=0.9, rating=5)], min_samples=1)
        expected = 0.9 * 0.5 + 1.0 * 0.3 + (1 - 1000 / 30000) * 0.2
        assert composite_score(stats) == pytest.approx(expected)

    def test_neutral_rating_when_unrated(self):
        stats = aggregate_metrics([_record(latency_ms=0, quality=1.0)], min_samples=1)
        assert composite_score(stats) == pytest.approx(0.5 + 0.6 * 0.3 + 0.2)

    def test_latency_efficiency_floors_at_zero(self):
        stats = aggregate_metrics([_record(latency_ms=60000, quality=0.0, rating=1)], min_samples=1)
        assert composite_score(stats) == pytest.approx(0.2 * 0.3)

    def test_insufficient_has_no_score(self):
        assert composite_score(aggregate_metrics([], min_samples=1)) is None

    def test_custom_weights(self):
        stats = aggregate_metrics([_record(latency_ms=0, quality=0.5)], min_samples=1)
        weights = CompositeWeights(quality=1.0, feedback=0.0, latency=0.0)
        assert composite_score(stats, weights) == pytest.approx(0.5)


class TestComparison:
    def _stats(self, count: int, quality: float, rating: int | None):
        records = [_record(latency_ms=0, quality=quality, rating=rating) for _ in range(count)]
        return aggregate_metrics(records, min_samples=5)

    def test_winner_and_high_confidence(self):
        result = compare_variants({"a": self._stats(100, 0.9, 5), "b": self._stats(100, 0.5, None)})

        assert result.winner == "a"
        assert result.scores["a"] == pytest.approx(0.95)
        assert result.scores["b"] == pytest.approx(0.63)
        assert result.confidence == pytest.approx(1.0)
        assert result.recommendation == 'High confidence. Recommend promoting "a" to production.'

    def test_moderate_confidence(self):
        result = compare_variants({"a": self._stats(50, 0.9, 5), "b": self._stats(50, 0.5, None)})
        assert result.confidence == pytest.approx(0.7)
        assert result.recommendation.startswith("Moderate confidence")

    def test_low_confidence(self):
        result = compare_variants({"a": self._stats(10, 0.9, 5), "b": self._stats(10, 0.5, None)})
        assert result.confidence == pytest.approx(0.46)
        assert result.recommendation.startswith("Low confidence")

    def test_single_valid_variant(self):
        result = compare_variants({"a": self._stats(20, 0.9, 5), "b": self._stats(2, 0.5, None)})

        assert result.winner == "a"
        assert set(result.scores) == {"a"}
        assert result.variants["b"].insufficient is True
        assert result.confidence == 0.0
        assert result.recommendation == "Only one variant has sufficient data. Continue collecting."

    def test_no_valid_variants(self):
        result = compare_variants({"a": self._stats(1, 0.9, 5)})
        assert result.winner is None
        assert result.recommendation == "Insufficient data for recommendation. Need more samples."

    def test_tie_keeps_first(self):
        result = compare_variants({"a": self._stats(10, 0.7, 4), "b": self._stats(10, 0.7, 4)})
        assert result.winner == "a"

    def test_confidence_requires_two(self):
        assert calculate_confidence({}, {}) == 0.0

    @pytest.mark.parametrize(
        "valid_count,confidence,prefix",
        [
            (0, 0.0, "Insufficient data"),
            (1, 0.9, "Only one variant"),
            (2, 0.49, "Low confidence"),
            (2, 0.5, "Moderate confidence"),
            (2, 0.8, "High confidence"),
        ],
    )
    def test_recommend_thresholds(self, valid_count, confidence, prefix):
        assert recommend(valid_count, confidence, "a").startswith(prefix)
