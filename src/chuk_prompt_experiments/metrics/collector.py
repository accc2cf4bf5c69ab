# chuk_prompt_experiments/metrics/collector.py
"""
Metrics Collector - buffered recording, feedback updates and queries.

Flush discipline:
- A flush swaps the whole buffer out under the buffer lock, then writes
  the batch outside any buffer lock so new records keep arriving.
- On failure (after bounded retries) the batch goes back to the front of
  the buffer for the next attempt: at-least-once into storage.
- Flushes are mutually exclusive. Threshold and timer flushes skip when
  one is already running; explicit flushes wait for it.
- The periodic timer re-arms only after its flush has finished.

Records live only in memory until flushed, so a crash before a flush
loses them (at-most-once until flush).
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from chuk_prompt_experiments.config import (
    METRICS_BATCH_SIZE,
    METRICS_FLUSH_INTERVAL,
    METRICS_MIN_SAMPLES,
    PERSIST_MAX_RETRIES,
    PERSIST_TIMEOUT,
)
from chuk_prompt_experiments.exceptions import NotFoundError, PersistenceError, ValidationError
from chuk_prompt_experiments.retry import SleepFunc, retry_with_backoff
from chuk_prompt_experiments.variants.registry import VariantRegistry

from .aggregator import CompositeWeights, LatencyHistogram, aggregate_metrics, compare_variants
from .models import (
    ABTestResult,
    AggregateStats,
    CollectorStats,
    ExecutionMetrics,
    FeedbackUpdate,
    GenerationMetric,
    GenerationOutcome,
    InputMetrics,
    LiveLatency,
    PromptVersion,
    QualityMetrics,
)
from .storage import InMemoryMetricsStorage, MetricsStorage

logger = logging.getLogger(__name__)

PROMPT_HASH_LENGTH = 16


def hash_prompt(prompt: str | None) -> str:
    """Short sha256 fingerprint of the prompt text, for audit only."""
    if not prompt:
        return ""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:PROMPT_HASH_LENGTH]


class CollectorConfig(BaseModel):
    """Configuration for the metrics collector."""

    batch_size: int = Field(default=METRICS_BATCH_SIZE, ge=1, description="Buffer size that triggers a flush")
    flush_interval: float = Field(default=METRICS_FLUSH_INTERVAL, gt=0, description="Seconds between timer flushes")
    min_samples: int = Field(default=METRICS_MIN_SAMPLES, ge=1)
    persist_timeout: float = Field(default=PERSIST_TIMEOUT, gt=0)
    persist_max_retries: int = Field(default=PERSIST_MAX_RETRIES, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    composite_weights: CompositeWeights = Field(default_factory=CompositeWeights)


class MetricsCollector:
    """
    Ingests one outcome per generation and answers aggregate queries.

    Usage::

        collector = MetricsCollector(storage=create_storage(), registry=registry)
        await collector.start()
        generation_id = await collector.record_generation(outcome)
        await collector.update_feedback(generation_id, {"rating": 5})
        result = await collector.get_ab_test_results(["roadmap-v1", "roadmap-v2"])
        await collector.shutdown()
    """

    def __init__(
        self,
        storage: MetricsStorage | None = None,
        registry: VariantRegistry | None = None,
        config: CollectorConfig | None = None,
        sleep_func: SleepFunc | None = None,
    ) -> None:
        self.storage = storage or InMemoryMetricsStorage()
        self.registry = registry
        self.config = config or CollectorConfig()
        self._sleep_func = sleep_func

        self._buffer: list[GenerationMetric] = []
        self._in_flight: dict[str, GenerationMetric] = {}
        self._buffer_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()

        self._timer_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._histograms: dict[str, LatencyHistogram] = {}
        self._stats = CollectorStats()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the periodic flush timer. Idempotent."""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.create_task(self._timer_loop())
            logger.debug(f"Metrics flush timer started ({self.config.flush_interval}s)")

    async def shutdown(self) -> None:
        """
        Stop the timer, wait for background flushes and flush what is left.

        Raises:
            PersistenceError: the final flush failed; records stay buffered
        """
        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self._flush(wait=True)
        await self.storage.shutdown()
        logger.debug("Metrics collector shut down")

    async def reset(self) -> None:
        """Drop buffered records, histograms and counters."""
        async with self._buffer_lock:
            self._buffer.clear()
        self._histograms.clear()
        self._stats = CollectorStats()

    # =========================================================================
    # Recording
    # =========================================================================

    async def record_generation(self, outcome: GenerationOutcome | dict[str, Any]) -> str:
        """
        Buffer one generation outcome and return its generation id.

        Also folds latency and quality into the variant's performance
        record when a registry is attached.

        Raises:
            ValidationError: the outcome is missing an identifier or malformed
        """
        if not isinstance(outcome, GenerationOutcome):
            try:
                outcome = GenerationOutcome.model_validate(outcome)
            except PydanticValidationError as e:
                self._stats.errors += 1
                raise ValidationError.from_pydantic(e) from e

        metric = self._build_metric(outcome)

        async with self._buffer_lock:
            self._buffer.append(metric)
            self._stats.total_recorded += 1
            buffered = len(self._buffer)

        self._histograms.setdefault(metric.variant_id, LatencyHistogram()).observe(metric.execution.latency_ms)
        self._update_registry(outcome)

        if buffered >= self.config.batch_size:
            self._schedule_flush()

        return metric.id

    def _build_metric(self, outcome: GenerationOutcome) -> GenerationMetric:
        validation = outcome.validation
        quality = QualityMetrics()
        if validation is not None:
            quality = QualityMetrics(
                validation_passed=validation.valid,
                validation_errors=list(validation.errors),
                safety_passed=validation.safe,
                safety_concerns=list(validation.concerns),
                quality_score=validation.quality_score,
                quality_grade=validation.quality_grade,
                dimensions=dict(validation.dimensions),
            )

        return GenerationMetric(
            id=outcome.generation_id or str(uuid.uuid4()),
            prompt_version=PromptVersion(
                content_type=outcome.content_type,
                variant_id=outcome.variant_id,
                prompt_hash=hash_prompt(outcome.prompt),
            ),
            input=InputMetrics(
                user_prompt_length=len(outcome.user_prompt),
                complexity=outcome.complexity,
                file_count=outcome.file_count,
                total_input_tokens=outcome.input_tokens,
                topics=list(outcome.topics),
            ),
            execution=ExecutionMetrics(
                model=outcome.model,
                latency_ms=outcome.latency_ms,
                input_tokens=outcome.input_tokens,
                output_tokens=outcome.output_tokens,
                retry_count=outcome.retry_count,
                cache_hit=outcome.cache_hit,
            ),
            quality=quality,
        )

    def _update_registry(self, outcome: GenerationOutcome) -> None:
        if self.registry is None:
            return
        validation = outcome.validation
        try:
            self.registry.update_performance(
                outcome.variant_id,
                latency_ms=outcome.latency_ms,
                quality_score=validation.quality_score if validation else None,
                success=bool(validation and validation.valid),
                error=bool(validation and not validation.valid),
            )
        except NotFoundError:
            logger.warning(f"Outcome for unregistered variant '{outcome.variant_id}'; registry not updated")

    # =========================================================================
    # Feedback
    # =========================================================================

    async def update_feedback(
        self,
        generation_id: str,
        feedback: FeedbackUpdate | dict[str, Any],
    ) -> GenerationMetric:
        """
        Merge feedback into a recorded generation.

        Looks in the buffer first, then in storage. A rating is also fed
        into the variant's performance record.

        Raises:
            ValidationError: empty or malformed feedback
            NotFoundError: unknown generation id
        """
        if not generation_id:
            raise ValidationError("generation_id is required", field="generation_id")
        if not isinstance(feedback, FeedbackUpdate):
            try:
                feedback = FeedbackUpdate.model_validate(feedback)
            except PydanticValidationError as e:
                self._stats.errors += 1
                raise ValidationError.from_pydantic(e) from e
        if feedback.is_empty:
            raise ValidationError("Feedback update carries no fields", field="feedback")

        updated = await self._apply_buffered_feedback(generation_id, feedback)
        if updated is None and generation_id in self._in_flight:
            # Let the running flush settle: the record ends up in storage or back in the buffer
            async with self._flush_lock:
                pass
            updated = await self._apply_buffered_feedback(generation_id, feedback)
        if updated is None:
            updated = await self.storage.update_feedback(generation_id, feedback)
        if updated is None:
            raise NotFoundError("generation", generation_id)

        self._stats.total_feedback_updates += 1

        if feedback.rating is not None and self.registry is not None:
            try:
                self.registry.update_performance(updated.variant_id, feedback=feedback.rating)
            except NotFoundError:
                logger.warning(f"Feedback for unregistered variant '{updated.variant_id}'; registry not updated")

        return updated

    async def _apply_buffered_feedback(self, generation_id: str, feedback: FeedbackUpdate) -> GenerationMetric | None:
        async with self._buffer_lock:
            for metric in self._buffer:
                if metric.id == generation_id:
                    metric.apply_feedback(feedback)
                    return metric.model_copy(deep=True)
        return None

    # =========================================================================
    # Flushing
    # =========================================================================

    async def flush(self) -> int:
        """Flush now, waiting for any running flush. Returns records written."""
        return await self._flush(wait=True)

    async def _flush(self, wait: bool) -> int:
        if not wait and self._flush_lock.locked():
            return 0

        async with self._flush_lock:
            async with self._buffer_lock:
                batch, self._buffer = self._buffer, []
            if not batch:
                return 0

            self._in_flight = {m.id: m for m in batch}
            self._stats.flush_in_progress = True
            try:
                await retry_with_backoff(
                    lambda: self.storage.batch_insert(batch),
                    operation="flush metrics",
                    max_retries=self.config.persist_max_retries,
                    timeout=self.config.persist_timeout,
                    base_delay=self.config.retry_base_delay,
                    sleep_func=self._sleep_func,
                )
            except PersistenceError:
                async with self._buffer_lock:
                    self._buffer[:0] = batch
                self._stats.errors += 1
                logger.warning(f"Metrics flush failed; {len(batch)} records returned to the buffer")
                raise
            finally:
                self._in_flight = {}
                self._stats.flush_in_progress = False

            self._stats.total_flushed += len(batch)
            logger.debug(f"Flushed {len(batch)} metrics")
            return len(batch)

    def _schedule_flush(self) -> None:
        task = asyncio.create_task(self._background_flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_flush(self) -> None:
        try:
            await self._flush(wait=False)
        except PersistenceError as e:
            logger.warning(f"Background metrics flush failed: {e}")

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            try:
                await self._flush(wait=False)
            except PersistenceError as e:
                logger.warning(f"Timed metrics flush failed: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_generation(self, generation_id: str) -> GenerationMetric | None:
        async with self._buffer_lock:
            for metric in self._buffer:
                if metric.id == generation_id:
                    return metric.model_copy(deep=True)
            in_flight = self._in_flight.get(generation_id)
            if in_flight is not None:
                return in_flight.model_copy(deep=True)
        return await self.storage.get_by_id(generation_id)

    async def get_variant_metrics(
        self,
        variant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        min_samples: int | None = None,
    ) -> AggregateStats:
        await self._flush_for_query()
        records = await self.storage.query_by_variant(variant_id, start, end)
        records = await self._with_buffered(records, start, end, lambda m: m.variant_id == variant_id)
        return aggregate_metrics(records, self.config.min_samples if min_samples is None else min_samples)

    async def get_content_type_metrics(
        self,
        content_type: str,
        start: datetime | None = None,
        end: datetime | None = None,
        min_samples: int | None = None,
    ) -> AggregateStats:
        await self._flush_for_query()
        records = await self.storage.query_by_content_type(content_type, start, end)
        records = await self._with_buffered(records, start, end, lambda m: m.content_type == content_type)
        return aggregate_metrics(records, self.config.min_samples if min_samples is None else min_samples)

    async def get_ab_test_results(
        self,
        variant_ids: list[str],
        start: datetime | None = None,
        end: datetime | None = None,
        min_samples: int | None = None,
    ) -> ABTestResult:
        """Aggregate each variant independently and pick a winner."""
        stats = {vid: await self.get_variant_metrics(vid, start, end, min_samples) for vid in variant_ids}
        result = compare_variants(stats, self.config.composite_weights)
        logger.debug(
            f"A/B over {variant_ids}: winner={result.winner} confidence={result.confidence:.2f}"
        )
        return result

    def get_live_latency(self, variant_id: str) -> LiveLatency | None:
        histogram = self._histograms.get(variant_id)
        return histogram.snapshot(variant_id) if histogram else None

    async def get_stats(self) -> CollectorStats:
        async with self._buffer_lock:
            buffer_size = len(self._buffer)
        stats = self._stats.model_copy()
        stats.buffer_size = buffer_size
        stats.storage = await self.storage.get_stats()
        return stats

    async def _flush_for_query(self) -> None:
        try:
            await self._flush(wait=True)
        except PersistenceError as e:
            logger.warning(f"Serving query with unflushed records: {e}")

    async def _with_buffered(
        self,
        records: list[GenerationMetric],
        start: datetime | None,
        end: datetime | None,
        predicate: Callable[[GenerationMetric], bool],
    ) -> list[GenerationMetric]:
        seen = {r.id for r in records}
        async with self._buffer_lock:
            extra = [
                m.model_copy(deep=True)
                for m in self._buffer
                if m.id not in seen
                and predicate(m)
                and (start is None or m.timestamp >= start)
                and (end is None or m.timestamp <= end)
            ]
        return records + extra
