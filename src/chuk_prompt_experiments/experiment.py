# chuk_prompt_experiments/experiment.py
"""
Experiment service - the per-request control flow.

    prepare()        -> select a variant, assemble the budgeted prompt
    (caller invokes the model and validates the output)
    report_outcome() -> record metrics, update variant performance
    submit_feedback()
    evaluate()       -> A/B comparison, optional promotion of the winner

The service owns no globals; build one per hosting process and pass it
around, or use ``ExperimentService.from_config()`` for the default wiring.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from chuk_prompt_experiments.context import (
    ContextAssembler,
    ContextPipeline,
    ContextResult,
    ResearchFile,
    StrategyTable,
    TokenEstimator,
)
from chuk_prompt_experiments.exceptions import ValidationError
from chuk_prompt_experiments.metrics import (
    DEFAULT_MODEL,
    ABTestResult,
    FeedbackUpdate,
    GenerationMetric,
    GenerationOutcome,
    MetricsCollector,
    ValidationReport,
    create_storage,
)
from chuk_prompt_experiments.variants import (
    ContentType,
    Variant,
    VariantRegistry,
    VariantStatus,
    content_type_for_task,
    create_snapshot_store,
    seed_default_variants,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMOTION_THRESHOLD = 0.8


class PreparedGeneration(BaseModel):
    """Everything the caller needs to invoke the model for one request."""

    variant: Variant
    content_type: str
    task_type: str
    user_prompt: str = ""
    context: ContextResult
    prompt: str = Field(description="Variant template followed by the assembled context")

    @property
    def file_count(self) -> int:
        return self.context.context.file_count


class EvaluationResult(BaseModel):
    content_type: str
    ab_test: ABTestResult
    promoted: str | None = None


class ExperimentService:
    """
    Facade wiring registry, context pipeline and collector together.

    Usage::

        service = ExperimentService.from_config()
        await service.start()

        prepared = service.prepare("roadmap", files, "Focus on 2025")
        ... call the model with prepared.prompt ...
        generation_id = await service.report_outcome(prepared, latency_ms=1800,
                                                     output_tokens=900,
                                                     validation=report)
        await service.submit_feedback(generation_id, {"rating": 5})

        result = await service.evaluate("Roadmap", auto_promote=True)
        await service.shutdown()
    """

    def __init__(
        self,
        registry: VariantRegistry,
        pipeline: ContextPipeline,
        collector: MetricsCollector,
        promotion_threshold: float = DEFAULT_PROMOTION_THRESHOLD,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.collector = collector
        self.promotion_threshold = promotion_threshold

    @classmethod
    def from_config(
        cls,
        storage_kind: str | None = None,
        data_dir: str | Path | None = None,
        snapshot_path: str | Path | None = None,
        seed_defaults: bool = True,
    ) -> ExperimentService:
        """Default wiring from environment configuration."""
        estimator = TokenEstimator()
        strategies = StrategyTable()
        pipeline = ContextPipeline(estimator, ContextAssembler(estimator, strategies), strategies)
        registry = VariantRegistry(store=create_snapshot_store(snapshot_path))
        if seed_defaults:
            seed_default_variants(registry)
        collector = MetricsCollector(storage=create_storage(storage_kind, data_dir), registry=registry)
        return cls(registry, pipeline, collector)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, load_snapshot: bool = False) -> None:
        """Optionally restore the registry, then start the flush timer."""
        if load_snapshot:
            await self.registry.load()
        await self.collector.start()

    async def shutdown(self, save_snapshot: bool = True) -> None:
        """Final metrics flush, then persist the registry."""
        await self.collector.shutdown()
        if save_snapshot:
            await self.registry.save()

    # =========================================================================
    # Per-request flow
    # =========================================================================

    def prepare(
        self,
        task_type: str,
        research_files: list[ResearchFile | dict[str, Any]],
        user_prompt: str = "",
        token_budget: int | None = None,
        content_type: str | None = None,
        forced_variant_id: str | None = None,
    ) -> PreparedGeneration:
        """
        Select a variant and build the budgeted prompt.

        Raises:
            ValidationError: no content type given or mapped for ``task_type``
            NoActiveVariantsError: nothing selectable for the content type
        """
        resolved = content_type or content_type_for_task(task_type)
        if resolved is None:
            raise ValidationError(f"No content type mapped for task type '{task_type}'", field="content_type")
        resolved_type = resolved.value if isinstance(resolved, ContentType) else resolved

        variant = self.registry.select(resolved_type, forced_variant_id=forced_variant_id)
        context = self.pipeline.process(research_files, user_prompt, task_type, token_budget)

        prompt = f"{variant.prompt_template}\n\n{context.prompt}" if variant.prompt_template else context.prompt
        if context.context.over_budget:
            logger.warning(f"Prepared prompt for '{task_type}' exceeds its token budget")

        return PreparedGeneration(
            variant=variant,
            content_type=resolved_type,
            task_type=task_type,
            user_prompt=user_prompt,
            context=context,
            prompt=prompt,
        )

    async def report_outcome(
        self,
        prepared: PreparedGeneration,
        latency_ms: float,
        output_tokens: int = 0,
        input_tokens: int | None = None,
        model: str = DEFAULT_MODEL,
        retry_count: int = 0,
        cache_hit: bool = False,
        validation: ValidationReport | dict[str, Any] | None = None,
    ) -> str:
        """Record the outcome of a prepared generation; returns the generation id."""
        outcome = GenerationOutcome(
            variant_id=prepared.variant.id,
            content_type=prepared.content_type,
            prompt=prepared.prompt,
            user_prompt=prepared.user_prompt,
            file_count=prepared.file_count,
            model=model,
            latency_ms=latency_ms,
            input_tokens=prepared.context.token_usage.used if input_tokens is None else input_tokens,
            output_tokens=output_tokens,
            retry_count=retry_count,
            cache_hit=cache_hit,
            validation=validation,
        )
        return await self.collector.record_generation(outcome)

    async def submit_feedback(
        self,
        generation_id: str,
        feedback: FeedbackUpdate | dict[str, Any],
    ) -> GenerationMetric:
        return await self.collector.update_feedback(generation_id, feedback)

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(
        self,
        content_type: str,
        auto_promote: bool = False,
        threshold: float | None = None,
        min_samples: int | None = None,
    ) -> EvaluationResult:
        """
        Compare the selectable variants of ``content_type``.

        With ``auto_promote`` the winner becomes champion once confidence
        reaches ``threshold`` (default: the service's promotion threshold).
        """
        variant_ids = [v.id for v in self.registry.get_selectable_variants(content_type)]
        ab_test = await self.collector.get_ab_test_results(variant_ids, min_samples=min_samples)

        promoted = None
        limit = self.promotion_threshold if threshold is None else threshold
        if auto_promote and ab_test.winner and ab_test.confidence >= limit:
            winner = self.registry.get_variant(ab_test.winner)
            if winner is not None and winner.status != VariantStatus.CHAMPION:
                if self.registry.promote_to_champion(winner.id):
                    promoted = winner.id
                    logger.info(
                        f"Auto-promoted {winner.id} for {content_type} (confidence {ab_test.confidence:.2f})"
                    )

        return EvaluationResult(content_type=content_type, ab_test=ab_test, promoted=promoted)
