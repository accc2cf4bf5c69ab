# chuk_prompt_experiments/metrics/models.py
"""
Generation metrics and aggregate statistics.

- GenerationMetric: one record per model call, feedback filled in later
- GenerationOutcome / FeedbackUpdate: caller-facing payloads
- AggregateStats: projection over a set of records, never stored
- ABTestResult: per-variant aggregates plus a winner call

Design principles:
- Pydantic-native: payload validation happens at the model boundary
- Feedback fields are nullable until reported
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from chuk_prompt_experiments.config import METRICS_MIN_SAMPLES

DEFAULT_MODEL = "gemini-1.5-pro"


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Generation record
# =============================================================================


class PromptVersion(BaseModel):
    """Which prompt produced a generation."""

    content_type: str
    variant_id: str
    prompt_hash: str = Field(default="", description="Short sha256 fingerprint of the prompt text")
    timestamp: datetime = Field(default_factory=_now)


class InputMetrics(BaseModel):
    user_prompt_length: int = Field(default=0, ge=0)
    complexity: float = Field(default=0.0, ge=0)
    file_count: int = Field(default=0, ge=0)
    total_input_tokens: int = Field(default=0, ge=0)
    topics: list[str] = Field(default_factory=list)


class ExecutionMetrics(BaseModel):
    model: str = DEFAULT_MODEL
    latency_ms: float = Field(default=0.0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    cache_hit: bool = False


class QualityMetrics(BaseModel):
    validation_passed: bool = True
    validation_errors: list[str] = Field(default_factory=list)
    safety_passed: bool = True
    safety_concerns: list[str] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    quality_grade: str = "N/A"
    dimensions: dict[str, float] = Field(default_factory=dict)


class FeedbackMetrics(BaseModel):
    """User feedback; every field stays None until reported."""

    rating: int | None = Field(default=None, ge=1, le=5)
    thumbs_up: bool | None = None
    was_edited: bool | None = None
    edit_distance: float | None = Field(default=None, ge=0.0, le=1.0, description="Edited fraction of output")
    time_to_first_edit_ms: float | None = Field(default=None, ge=0)
    was_exported: bool | None = None
    was_regenerated: bool | None = None


class GenerationMetric(BaseModel):
    """One generation event."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=_now)
    prompt_version: PromptVersion
    input: InputMetrics = Field(default_factory=InputMetrics)
    execution: ExecutionMetrics = Field(default_factory=ExecutionMetrics)
    quality: QualityMetrics = Field(default_factory=QualityMetrics)
    feedback: FeedbackMetrics = Field(default_factory=FeedbackMetrics)
    feedback_updated_at: datetime | None = None

    @property
    def variant_id(self) -> str:
        return self.prompt_version.variant_id

    @property
    def content_type(self) -> str:
        return self.prompt_version.content_type

    def apply_feedback(self, update: FeedbackUpdate) -> None:
        """Merge only the fields the update carries."""
        merged = self.feedback.model_dump()
        merged.update(update.model_dump(exclude_none=True))
        self.feedback = FeedbackMetrics.model_validate(merged)
        self.feedback_updated_at = _now()


# =============================================================================
# Caller payloads
# =============================================================================


class ValidationReport(BaseModel):
    """Result of the external output validator, accepted as given."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    safe: bool = True
    concerns: list[str] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    quality_grade: str = "N/A"
    dimensions: dict[str, float] = Field(default_factory=dict)


class GenerationOutcome(BaseModel):
    """Outcome report for one generation."""

    variant_id: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    generation_id: str | None = None
    prompt: str = Field(default="", description="Prompt text actually sent; hashed, not stored")
    user_prompt: str = ""
    complexity: float = Field(default=0.0, ge=0)
    file_count: int = Field(default=0, ge=0)
    topics: list[str] = Field(default_factory=list)
    model: str = DEFAULT_MODEL
    latency_ms: float = Field(default=0.0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    cache_hit: bool = False
    validation: ValidationReport | None = None


class FeedbackUpdate(BaseModel):
    """Any subset of feedback fields for a recorded generation."""

    rating: int | None = Field(default=None, ge=1, le=5)
    thumbs_up: bool | None = None
    was_edited: bool | None = None
    edit_distance: float | None = Field(default=None, ge=0.0, le=1.0)
    time_to_first_edit_ms: float | None = Field(default=None, ge=0)
    was_exported: bool | None = None
    was_regenerated: bool | None = None

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


# =============================================================================
# Aggregates
# =============================================================================


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class ExecutionStats(BaseModel):
    avg_latency_ms: float = 0.0
    p50_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    avg_input_tokens: float = 0.0
    avg_output_tokens: float = 0.0
    cache_hit_rate: float = 0.0
    avg_retries: float = 0.0


class QualityStats(BaseModel):
    avg_score: float = 0.0
    success_rate: float = 0.0
    safety_pass_rate: float = 0.0
    grade_distribution: dict[str, int] = Field(default_factory=dict)
    dimensions: dict[str, float] = Field(default_factory=dict)


class FeedbackStats(BaseModel):
    """Each rate is over the records that reported that field."""

    avg_rating: float | None = None
    rating_count: int = 0
    positive_rate: float | None = Field(default=None, description="Share of ratings >= 4")
    thumbs_up_rate: float | None = None
    edit_rate: float | None = None
    avg_edit_distance: float | None = None
    export_rate: float | None = None
    regenerate_rate: float | None = None


class AggregateStats(BaseModel):
    """
    Aggregate statistics over a set of generation records.

    When ``insufficient`` is set only the counts are meaningful.
    """

    insufficient: bool = False
    sample_count: int = 0
    min_required: int = METRICS_MIN_SAMPLES
    feedback_count: int = 0
    time_range: TimeRange | None = None
    execution: ExecutionStats | None = None
    quality: QualityStats | None = None
    feedback: FeedbackStats | None = None


class LatencyBucket(BaseModel):
    upper_ms: float
    count: int = 0


class LiveLatency(BaseModel):
    """Streaming latency view for one variant."""

    variant_id: str
    count: int = 0
    mean_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None
    p50_ms: float | None = None
    p95_ms: float | None = None
    p99_ms: float | None = None
    buckets: list[LatencyBucket] = Field(default_factory=list)


class ABTestResult(BaseModel):
    """Comparison of variants with a promotion recommendation."""

    variants: dict[str, AggregateStats] = Field(default_factory=dict)
    scores: dict[str, float] = Field(default_factory=dict, description="Composite score per valid variant")
    winner: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    recommendation: str = ""


class CollectorStats(BaseModel):
    total_recorded: int = 0
    total_flushed: int = 0
    total_feedback_updates: int = 0
    errors: int = 0
    buffer_size: int = 0
    flush_in_progress: bool = False
    storage: dict[str, Any] = Field(default_factory=dict)
