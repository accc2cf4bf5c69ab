# chuk_prompt_experiments/context/pipeline.py
"""
Context pipeline: strategy lookup -> preprocessing -> assembly -> prompt.

Collaborators are passed in already constructed; the pipeline owns no
state of its own and can be shared across concurrent requests.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from .assembler import ContextAssembler
from .models import ContextResult, ResearchFile, TokenUsage
from .strategies import StrategyTable
from .token_estimator import TokenEstimator

logger = logging.getLogger(__name__)


class ContextPipeline:
    """End-to-end prompt construction for one request."""

    def __init__(
        self,
        estimator: TokenEstimator,
        assembler: ContextAssembler,
        strategies: StrategyTable,
    ) -> None:
        self.estimator = estimator
        self.assembler = assembler
        self.strategies = strategies

    def process(
        self,
        research_files: list[ResearchFile | dict[str, Any]],
        user_prompt: str = "",
        task_type: str = "default",
        token_budget: int | None = None,
        include_markers: bool = False,
    ) -> ContextResult:
        """
        Build the budgeted prompt for ``task_type``.

        Args:
            research_files: Ordered research documents ({name, text})
            user_prompt: Free-text instructions from the user
            task_type: Strategy key; unknown keys use the default strategy
            token_budget: Optional override of the strategy's total budget
            include_markers: Emit per-component markers in the prompt

        Returns:
            ContextResult with the prompt and token accounting
        """
        started = time.perf_counter()
        strategy = self.strategies.get_strategy(task_type)

        files = []
        for f in research_files:
            research = f if isinstance(f, ResearchFile) else ResearchFile.model_validate(f)
            files.append(
                ResearchFile(
                    name=research.name,
                    text=self.strategies.apply_preprocessing(research.text, task_type),
                )
            )

        task_description = self.strategies.build_task_description(task_type)
        assembled = self.assembler.assemble(
            task_description,
            files,
            user_prompt=user_prompt,
            task_type=task_type,
            budget=token_budget,
        )
        prompt = self.assembler.build_prompt(assembled, include_markers=include_markers)

        usage = TokenUsage(
            budget=assembled.budget_tokens,
            used=assembled.total_tokens,
            available=max(0, assembled.budget_tokens - assembled.total_tokens),
            utilization=assembled.budget_used,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.debug(
            f"Context for '{task_type}' ({strategy.name}): "
            f"{usage.used}/{usage.budget} tokens, {len(files)} files, {elapsed_ms:.1f}ms"
        )

        return ContextResult(
            prompt=prompt,
            context=assembled,
            strategy_name=strategy.name,
            token_usage=usage,
            processing_time_ms=elapsed_ms,
        )
