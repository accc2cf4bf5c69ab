# chuk_prompt_experiments/metrics/aggregator.py
"""
Aggregation over generation records and A/B comparison.

All functions here are pure: they take records or aggregates and return
new models. Nothing is stored; aggregates are always recomputed.

Composite score (per variant with enough data):
    quality * 0.5 + (avg_rating or 3) / 5 * 0.3 + (1 - min(latency / 30s, 1)) * 0.2

Confidence blends a sample-size factor (saturates at ~100 samples) with a
separation factor (gap between the best and worst composite score).
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from chuk_prompt_experiments.config import METRICS_MIN_SAMPLES

from .models import (
    ABTestResult,
    AggregateStats,
    ExecutionStats,
    FeedbackStats,
    GenerationMetric,
    LatencyBucket,
    LiveLatency,
    QualityStats,
    TimeRange,
)

# Upper bounds (ms) of the streaming latency histogram
LATENCY_BUCKETS_MS: tuple[float, ...] = (
    50,
    100,
    250,
    500,
    1000,
    2500,
    5000,
    10000,
    30000,
    60000,
    math.inf,
)

SAMPLE_SATURATION = 100
SEPARATION_SCALE = 5
LOW_CONFIDENCE = 0.5
HIGH_CONFIDENCE = 0.8


class CompositeWeights(BaseModel):
    """Weights of the composite ranking score."""

    quality: float = Field(default=0.5, ge=0)
    feedback: float = Field(default=0.3, ge=0)
    latency: float = Field(default=0.2, ge=0)
    latency_cap_ms: float = Field(default=30000.0, gt=0, description="Latency at which efficiency hits zero")
    neutral_rating: float = Field(default=3.0, ge=1, le=5, description="Rating assumed when none reported")


# =============================================================================
# Percentiles
# =============================================================================


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an ascending sequence; 0.0 when empty."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    idx = math.ceil((p / 100) * n) - 1
    return float(sorted_values[min(n - 1, max(0, idx))])


class LatencyHistogram:
    """
    Streaming latency histogram over ``LATENCY_BUCKETS_MS``.

    Percentiles interpolate linearly inside the bucket holding the
    nearest rank and are clamped to the observed min/max, so
    ``p50 <= p95 <= p99`` always holds.
    """

    def __init__(self, bounds: Sequence[float] = LATENCY_BUCKETS_MS) -> None:
        self.bounds = tuple(bounds)
        self.counts = [0] * len(self.bounds)
        self.count = 0
        self.total = 0.0
        self.min: float | None = None
        self.max: float | None = None

    def observe(self, latency_ms: float) -> None:
        index = min(bisect.bisect_left(self.bounds, latency_ms), len(self.bounds) - 1)
        self.counts[index] += 1
        self.count += 1
        self.total += latency_ms
        self.min = latency_ms if self.min is None else min(self.min, latency_ms)
        self.max = latency_ms if self.max is None else max(self.max, latency_ms)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def percentile(self, p: float) -> float | None:
        if self.count == 0 or self.min is None or self.max is None:
            return None

        rank = max(1, math.ceil((p / 100) * self.count))
        cumulative = 0
        for i, bucket_count in enumerate(self.counts):
            if bucket_count == 0:
                continue
            if cumulative + bucket_count >= rank:
                lower = self.bounds[i - 1] if i > 0 else 0.0
                upper = self.bounds[i] if math.isfinite(self.bounds[i]) else self.max
                lower = max(lower, self.min)
                upper = min(upper, self.max)
                fraction = (rank - cumulative) / bucket_count
                estimate = lower + (upper - lower) * fraction
                return min(self.max, max(self.min, estimate))
            cumulative += bucket_count
        return self.max

    def snapshot(self, variant_id: str) -> LiveLatency:
        return LiveLatency(
            variant_id=variant_id,
            count=self.count,
            mean_ms=self.mean,
            min_ms=self.min,
            max_ms=self.max,
            p50_ms=self.percentile(50),
            p95_ms=self.percentile(95),
            p99_ms=self.percentile(99),
            buckets=[
                LatencyBucket(upper_ms=bound, count=count)
                for bound, count in zip(self.bounds, self.counts, strict=True)
            ],
        )


# =============================================================================
# Aggregation
# =============================================================================


def _rate(flags: Iterable[bool | None]) -> float | None:
    """True share among non-null values; None when nothing reported."""
    reported = [f for f in flags if f is not None]
    if not reported:
        return None
    return sum(1 for f in reported if f) / len(reported)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def aggregate_metrics(
    records: Sequence[GenerationMetric],
    min_samples: int = METRICS_MIN_SAMPLES,
) -> AggregateStats:
    """
    Aggregate execution, quality and feedback statistics.

    Returns an ``insufficient`` result (counts only) when there are fewer
    than ``min_samples`` records, or none at all.
    """
    n = len(records)
    if n == 0 or n < min_samples:
        return AggregateStats(insufficient=True, sample_count=n, min_required=min_samples)

    latencies = sorted(r.execution.latency_ms for r in records)
    timestamps = [r.timestamp for r in records]

    execution = ExecutionStats(
        avg_latency_ms=_mean(latencies),
        p50_latency_ms=percentile(latencies, 50),
        p95_latency_ms=percentile(latencies, 95),
        p99_latency_ms=percentile(latencies, 99),
        min_latency_ms=latencies[0],
        max_latency_ms=latencies[-1],
        avg_input_tokens=_mean([r.execution.input_tokens for r in records]),
        avg_output_tokens=_mean([r.execution.output_tokens for r in records]),
        cache_hit_rate=sum(1 for r in records if r.execution.cache_hit) / n,
        avg_retries=_mean([r.execution.retry_count for r in records]),
    )

    grades: dict[str, int] = {}
    dimension_sums: dict[str, float] = {}
    dimension_counts: dict[str, int] = {}
    for r in records:
        grades[r.quality.quality_grade] = grades.get(r.quality.quality_grade, 0) + 1
        for name, value in r.quality.dimensions.items():
            dimension_sums[name] = dimension_sums.get(name, 0.0) + value
            dimension_counts[name] = dimension_counts.get(name, 0) + 1

    quality = QualityStats(
        avg_score=_mean([r.quality.quality_score for r in records]),
        success_rate=sum(1 for r in records if r.quality.validation_passed) / n,
        safety_pass_rate=sum(1 for r in records if r.quality.safety_passed) / n,
        grade_distribution=grades,
        dimensions={name: dimension_sums[name] / dimension_counts[name] for name in dimension_sums},
    )

    ratings = [r.feedback.rating for r in records if r.feedback.rating is not None]
    edit_distances = [r.feedback.edit_distance for r in records if r.feedback.edit_distance is not None]
    feedback = FeedbackStats(
        avg_rating=_mean(ratings) if ratings else None,
        rating_count=len(ratings),
        positive_rate=sum(1 for rating in ratings if rating >= 4) / len(ratings) if ratings else None,
        thumbs_up_rate=_rate(r.feedback.thumbs_up for r in records),
        edit_rate=_rate(r.feedback.was_edited for r in records),
        avg_edit_distance=_mean(edit_distances) if edit_distances else None,
        export_rate=_rate(r.feedback.was_exported for r in records),
        regenerate_rate=_rate(r.feedback.was_regenerated for r in records),
    )

    return AggregateStats(
        sample_count=n,
        min_required=min_samples,
        feedback_count=len(ratings),
        time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
        execution=execution,
        quality=quality,
        feedback=feedback,
    )


# =============================================================================
# A/B comparison
# =============================================================================


def composite_score(stats: AggregateStats, weights: CompositeWeights | None = None) -> float | None:
    """Ranking score for one variant; None when its data is insufficient."""
    if stats.insufficient or stats.quality is None or stats.execution is None:
        return None
    weights = weights or CompositeWeights()
    rating = stats.feedback.avg_rating if stats.feedback and stats.feedback.avg_rating is not None else None
    rating = weights.neutral_rating if rating is None else rating

    quality_part = stats.quality.avg_score * weights.quality
    feedback_part = (rating / 5) * weights.feedback
    efficiency_part = (1 - min(stats.execution.avg_latency_ms / weights.latency_cap_ms, 1)) * weights.latency
    return quality_part + feedback_part + efficiency_part


def calculate_confidence(valid: dict[str, AggregateStats], scores: dict[str, float]) -> float:
    """Confidence in [0, 1]; 0 with fewer than two comparable variants."""
    if len(valid) < 2 or len(scores) < 2:
        return 0.0
    avg_samples = sum(s.sample_count for s in valid.values()) / len(valid)
    gap = max(scores.values()) - min(scores.values())
    sample_factor = min(1.0, avg_samples / SAMPLE_SATURATION)
    separation_factor = min(1.0, gap * SEPARATION_SCALE)
    return min(1.0, sample_factor * 0.6 + separation_factor * 0.4)


def recommend(valid_count: int, confidence: float, winner: str | None) -> str:
    if valid_count == 0:
        return "Insufficient data for recommendation. Need more samples."
    if valid_count == 1:
        return "Only one variant has sufficient data. Continue collecting."
    if confidence < LOW_CONFIDENCE:
        return "Low confidence. Continue experiment to gather more data."
    if confidence < HIGH_CONFIDENCE:
        return "Moderate confidence. Consider running longer or with more traffic."
    return f'High confidence. Recommend promoting "{winner}" to production.'


def compare_variants(
    stats_by_variant: dict[str, AggregateStats],
    weights: CompositeWeights | None = None,
) -> ABTestResult:
    """
    Rank variants by composite score.

    The winner is the best-scoring variant with sufficient data; ties keep
    the first variant in input order.
    """
    scores: dict[str, float] = {}
    for variant_id, stats in stats_by_variant.items():
        score = composite_score(stats, weights)
        if score is not None:
            scores[variant_id] = score

    valid = {vid: stats_by_variant[vid] for vid in scores}
    winner = None
    for variant_id, score in scores.items():
        if winner is None or score > scores[winner]:
            winner = variant_id

    confidence = calculate_confidence(valid, scores)
    return ABTestResult(
        variants=dict(stats_by_variant),
        scores=scores,
        winner=winner,
        confidence=confidence,
        recommendation=recommend(len(valid), confidence, winner),
    )
