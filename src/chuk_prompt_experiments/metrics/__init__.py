# chuk_prompt_experiments/metrics/__init__.py
"""
Generation metrics: collection, storage, aggregation and A/B comparison.

Usage:
    from chuk_prompt_experiments.metrics import MetricsCollector, create_storage

    collector = MetricsCollector(storage=create_storage(), registry=registry)
    generation_id = await collector.record_generation({...})
"""

from .aggregator import (
    LATENCY_BUCKETS_MS,
    CompositeWeights,
    LatencyHistogram,
    aggregate_metrics,
    calculate_confidence,
    compare_variants,
    composite_score,
    percentile,
    recommend,
)
from .collector import CollectorConfig, MetricsCollector, hash_prompt
from .models import (
    DEFAULT_MODEL,
    ABTestResult,
    AggregateStats,
    CollectorStats,
    ExecutionMetrics,
    ExecutionStats,
    FeedbackMetrics,
    FeedbackStats,
    FeedbackUpdate,
    GenerationMetric,
    GenerationOutcome,
    InputMetrics,
    LatencyBucket,
    LiveLatency,
    PromptVersion,
    QualityMetrics,
    QualityStats,
    TimeRange,
    ValidationReport,
)
from .storage import (
    FileMetricsStorage,
    InMemoryMetricsStorage,
    MetricsStorage,
    create_storage,
    metrics_filename,
)

__all__ = [
    # Records
    "GenerationMetric",
    "PromptVersion",
    "InputMetrics",
    "ExecutionMetrics",
    "QualityMetrics",
    "FeedbackMetrics",
    "DEFAULT_MODEL",
    # Payloads
    "GenerationOutcome",
    "ValidationReport",
    "FeedbackUpdate",
    # Aggregates
    "AggregateStats",
    "ExecutionStats",
    "QualityStats",
    "FeedbackStats",
    "TimeRange",
    "ABTestResult",
    "LiveLatency",
    "LatencyBucket",
    "CollectorStats",
    # Aggregation
    "aggregate_metrics",
    "percentile",
    "composite_score",
    "calculate_confidence",
    "compare_variants",
    "recommend",
    "CompositeWeights",
    "LatencyHistogram",
    "LATENCY_BUCKETS_MS",
    # Collector
    "MetricsCollector",
    "CollectorConfig",
    "hash_prompt",
    # Storage
    "MetricsStorage",
    "InMemoryMetricsStorage",
    "FileMetricsStorage",
    "create_storage",
    "metrics_filename",
]
