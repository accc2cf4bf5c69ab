# chuk_prompt_experiments/context/assembler.py
"""
Context Assembler - packs task, research and hints into a token budget.

Assembly order:
1. Resolve absolute allocations from the strategy (or an explicit budget).
2. Task component (critical, never truncated once built).
3. Content component from the research files.
4. Optional examples component, then the meta component (hints).
5. If the sum is still over the total budget, shrink components from the
   lowest priority upward. A component loses at most half of its tokens
   per pass and is dropped once its target falls below a small floor.

An assembly that cannot be brought under budget is still returned, with
``budget_used > 1.0`` and a BudgetOverflowNotice attached.

Design principles:
- Never throws on size: degradation is always best-effort
- Component token counts are always re-estimated after a cut
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from pydantic import BaseModel, Field

from .models import (
    SECTION_TRUNCATION_MARKER,
    TRUNCATION_MARKER,
    AssembledContext,
    AssemblyStats,
    BudgetCategory,
    BudgetOverflowNotice,
    ContentKind,
    ContextComponent,
    ContextPriority,
    PriorityBucket,
    ResearchFile,
    TokenBudget,
)
from .strategies import StrategyTable
from .token_estimator import TokenEstimator

logger = logging.getLogger(__name__)

_SECTION_SPLIT_RE = re.compile(r"(?=^##\s)", re.MULTILINE)

FILE_SEPARATOR = "\n\n---\n\n"


class AssemblerConfig(BaseModel):
    """Tuning knobs for the assembler."""

    per_file_overhead: int = Field(default=50, ge=0, description="Tokens reserved per file header")
    min_component_tokens: int = Field(default=20, ge=1, description="Below this a component is dropped")
    content_kind: ContentKind = Field(default=ContentKind.PROSE, description="Kind used for estimation")
    paragraph_break_ratio: float = Field(default=0.7, gt=0, le=1)
    sentence_break_ratio: float = Field(default=0.8, gt=0, le=1)


class ContextAssembler:
    """
    Builds budgeted prompts from research files.

    Usage::

        assembler = ContextAssembler(TokenEstimator(), StrategyTable())
        assembled = assembler.assemble(task, files, "Focus on Q3", "roadmap")
        if assembled.over_budget:
            ...
        prompt = assembler.build_prompt(assembled)
    """

    def __init__(
        self,
        estimator: TokenEstimator,
        strategies: StrategyTable,
        config: AssemblerConfig | None = None,
    ) -> None:
        self.estimator = estimator
        self.strategies = strategies
        self.config = config or AssemblerConfig()

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(
        self,
        task_description: str,
        research_files: list[ResearchFile | dict[str, Any]] | None = None,
        user_prompt: str = "",
        task_type: str = "default",
        budget: TokenBudget | int | None = None,
        examples: list[str] | None = None,
    ) -> AssembledContext:
        """
        Assemble components under the budget for ``task_type``.

        ``budget`` may be a full TokenBudget or just a total-token override
        applied to the strategy's budget shape.
        """
        token_budget = self._resolve_budget(task_type, budget)
        allocations = token_budget.allocate()
        files = [f if isinstance(f, ResearchFile) else ResearchFile.model_validate(f) for f in research_files or []]

        components: list[ContextComponent] = []
        truncated: list[str] = []

        task = self._build_task_component(task_description, user_prompt, allocations.get(BudgetCategory.TASK.value, 0))
        content = self._build_content_component(files, allocations.get(BudgetCategory.CONTENT.value, 0))
        example_block = self._build_examples_component(examples or [], allocations.get(BudgetCategory.EXAMPLES.value, 0))
        meta = self._build_meta_component(task_type, len(files), allocations.get(BudgetCategory.META.value, 0))

        excluded: list[str] = []
        for component in (task, content, example_block, meta):
            if component is None:
                continue
            if not component.content:
                # Allocation too small to hold anything past the marker
                if component.metadata.get("truncated"):
                    excluded.append(component.name)
                    logger.debug(f"Excluded component '{component.name}': allocation too small")
                continue
            if component.metadata.get("truncated"):
                truncated.append(component.name)
            components.append(component)

        excluded.extend(self._fit_to_budget(components, token_budget.total_tokens, truncated))

        total = sum(c.tokens for c in components)
        overflow = None
        if total > token_budget.total_tokens:
            overflow = BudgetOverflowNotice(
                budget=token_budget.total_tokens,
                total_tokens=total,
                overage=total - token_budget.total_tokens,
            )
            logger.warning(
                f"Context for '{task_type}' is {overflow.overage} tokens over budget "
                f"({total}/{token_budget.total_tokens}) after truncation"
            )

        return AssembledContext(
            components=components,
            total_tokens=total,
            budget_tokens=token_budget.total_tokens,
            budget_used=total / token_budget.total_tokens,
            truncated_components=truncated,
            excluded_components=excluded,
            overflow=overflow,
            task_type=task_type,
            file_count=len(files),
            allocations=allocations,
        )

    def build_prompt(self, assembled: AssembledContext, include_markers: bool = False) -> str:
        """Render components critical-first; ties keep assembly order."""
        parts = []
        for component in sorted(assembled.components, key=lambda c: c.priority):
            if include_markers:
                parts.append(f"<!-- {component.name} ({component.tokens} tokens) -->\n{component.content}")
            else:
                parts.append(component.content)
        return "\n\n".join(parts)

    def get_stats(self, assembled: AssembledContext) -> AssemblyStats:
        by_priority: dict[str, PriorityBucket] = {}
        for component in assembled.components:
            bucket = by_priority.setdefault(component.priority.name.lower(), PriorityBucket())
            bucket.count += 1
            bucket.tokens += component.tokens

        return AssemblyStats(
            total_components=len(assembled.components),
            total_tokens=assembled.total_tokens,
            budget_utilization=f"{assembled.budget_used * 100:.1f}%",
            by_priority=by_priority,
            by_name={c.name: c.tokens for c in assembled.components},
            truncated=len(assembled.truncated_components),
            excluded=len(assembled.excluded_components),
        )

    # ------------------------------------------------------------------
    # Truncation
    # ------------------------------------------------------------------

    def smart_truncate(self, text: str, max_tokens: int) -> str:
        """
        Truncate at ``## `` section boundaries where possible.

        Whole sections are kept while they fit; if not even the first
        section fits, falls back to a paragraph/sentence aware hard cut.
        """
        kind = self.config.content_kind
        if self.estimator.count(text, kind) <= max_tokens:
            return text

        sections = [s for s in _SECTION_SPLIT_RE.split(text) if s.strip()]
        if len(sections) > 1:
            marker = f"\n\n{SECTION_TRUNCATION_MARKER}"
            room = max_tokens - self.estimator.count(marker, kind)
            kept = ""
            for section in sections:
                candidate = kept + section
                if self.estimator.count(candidate.rstrip(), kind) > room:
                    break
                kept = candidate
            if kept.strip():
                return kept.rstrip() + marker

        return self.hard_truncate(text, max_tokens)

    def hard_truncate(self, text: str, max_tokens: int) -> str:
        """
        Cut to ``max_tokens`` preferring a paragraph, then a sentence break.

        Returns an empty string when the budget cannot even hold the marker.
        """
        kind = self.config.content_kind
        if self.estimator.count(text, kind) <= max_tokens:
            return text

        marker = f"\n\n{TRUNCATION_MARKER}"
        room = max_tokens - self.estimator.count(marker, kind)
        if room <= 0:
            return ""

        max_chars = min(len(text), self.estimator.estimate_capacity(room, kind).estimated_characters)
        while max_chars > 0:
            cut = text[:max_chars]
            paragraph = cut.rfind("\n\n")
            sentence = cut.rfind(". ")
            if paragraph > max_chars * self.config.paragraph_break_ratio:
                cut = cut[:paragraph]
            elif sentence > max_chars * self.config.sentence_break_ratio:
                cut = cut[: sentence + 1]

            result = cut.rstrip() + marker
            if cut.strip() and self.estimator.count(result, kind) <= max_tokens:
                return result
            max_chars = int(max_chars * 0.9)

        return ""

    # ------------------------------------------------------------------
    # Component builders
    # ------------------------------------------------------------------

    def _resolve_budget(self, task_type: str, budget: TokenBudget | int | None) -> TokenBudget:
        if isinstance(budget, TokenBudget):
            return budget
        return self.strategies.get_budget(task_type, budget)

    def _component(
        self,
        name: str,
        content: str,
        priority: ContextPriority,
        truncatable: bool,
        **metadata: Any,
    ) -> ContextComponent:
        return ContextComponent(
            name=name,
            content=content,
            tokens=self.estimator.count(content, self.config.content_kind),
            priority=priority,
            truncatable=truncatable,
            metadata=metadata,
        )

    def _build_task_component(self, task_description: str, user_prompt: str, allocation: int) -> ContextComponent:
        text = task_description.strip()
        if user_prompt:
            text = f"{text}\n\nUser Instructions:\n{user_prompt}" if text else f"User Instructions:\n{user_prompt}"

        original = self.estimator.count(text, self.config.content_kind)
        was_truncated = False
        if allocation > 0 and original > allocation:
            capped = self.smart_truncate(text, allocation)
            # Never drop the task; an uncapped task surfaces as overflow instead
            if capped:
                text = capped
                was_truncated = True
            else:
                logger.warning(f"Task allocation ({allocation} tokens) cannot hold the task; keeping it whole")

        return self._component(
            "task",
            text,
            ContextPriority.CRITICAL,
            truncatable=False,
            original_tokens=original,
            truncated=was_truncated,
        )

    def _build_content_component(self, files: list[ResearchFile], allocation: int) -> ContextComponent | None:
        if not files:
            return None

        combined = self._format_files(files)
        original = self.estimator.count(combined, self.config.content_kind)
        was_truncated = False

        if original > allocation:
            was_truncated = True
            if len(files) == 1:
                combined = self.smart_truncate(combined, allocation)
            else:
                combined = self._truncate_proportionally(files, allocation)

        return self._component(
            "content",
            combined,
            ContextPriority.CRITICAL,
            truncatable=True,
            file_count=len(files),
            original_tokens=original,
            truncated=was_truncated,
        )

    def _truncate_proportionally(self, files: list[ResearchFile], allocation: int) -> str:
        """Give each file a share of the allocation proportional to its size."""
        total_chars = sum(len(f.text) for f in files) or 1
        available = max(0, allocation - self.config.per_file_overhead * len(files))

        shortened = []
        for f in files:
            share = math.floor(available * len(f.text) / total_chars)
            text = self.smart_truncate(f.text, share) if share > 0 else ""
            shortened.append(ResearchFile(name=f.name, text=text))

        combined = self._format_files(shortened)
        # Headers and separators can still tip it over
        if self.estimator.count(combined, self.config.content_kind) > allocation:
            combined = self.hard_truncate(combined, allocation)
        return combined

    def _build_examples_component(self, examples: list[str], allocation: int) -> ContextComponent | None:
        if not examples:
            return None
        text = "Examples:\n\n" + "\n\n".join(e.strip() for e in examples if e.strip())
        original = self.estimator.count(text, self.config.content_kind)
        was_truncated = original > allocation
        if was_truncated:
            text = self.hard_truncate(text, allocation)
        return self._component(
            "examples",
            text,
            ContextPriority.MEDIUM,
            truncatable=True,
            original_tokens=original,
            truncated=was_truncated,
        )

    def _build_meta_component(self, task_type: str, file_count: int, allocation: int) -> ContextComponent:
        strategy = self.strategies.get_strategy(task_type)
        lines = [f"Task type: {task_type}", f"Source files: {file_count}"]
        if strategy.goal:
            lines.append(f"Goal: {strategy.goal}")
        if strategy.instructions.format:
            lines.append(f"Output format: {strategy.instructions.format}")
        text = "\n".join(lines)

        original = self.estimator.count(text, self.config.content_kind)
        was_truncated = original > allocation
        if was_truncated:
            text = self.hard_truncate(text, allocation)
        return self._component(
            "meta",
            text,
            ContextPriority.HIGH,
            truncatable=True,
            original_tokens=original,
            truncated=was_truncated,
        )

    @staticmethod
    def _format_files(files: list[ResearchFile]) -> str:
        return FILE_SEPARATOR.join(f"## {f.name}\n\n{f.text}" for f in files)

    # ------------------------------------------------------------------
    # Budget enforcement
    # ------------------------------------------------------------------

    def _fit_to_budget(
        self,
        components: list[ContextComponent],
        total_budget: int,
        truncated: list[str],
    ) -> list[str]:
        """
        Shrink components in place, lowest priority first.

        Returns the names of components dropped entirely. Mutates
        ``components`` and ``truncated``.
        """
        excluded: list[str] = []
        overage = sum(c.tokens for c in components) - total_budget
        if overage <= 0:
            return excluded

        # Lowest priority first; among equals, the later-built one first
        order = sorted(enumerate(components), key=lambda item: (item[1].priority, item[0]), reverse=True)

        for _, component in order:
            if overage <= 0:
                break
            if not component.truncatable:
                continue

            while overage > 0:
                current = component.tokens
                target = max(current - overage, current // 2)
                shortened = ""
                if target >= self.config.min_component_tokens:
                    shortened = self.smart_truncate(_strip_markers(component.content), target)
                tokens = self.estimator.count(shortened, self.config.content_kind)

                if not shortened or tokens >= current:
                    components.remove(component)
                    excluded.append(component.name)
                    if component.name in truncated:
                        truncated.remove(component.name)
                    overage -= current
                    logger.debug(f"Dropped component '{component.name}' ({current} tokens)")
                    break

                component.content = shortened
                component.tokens = tokens
                component.metadata["truncated"] = True
                if component.name not in truncated:
                    truncated.append(component.name)
                overage -= current - tokens

        return excluded


def _strip_markers(text: str) -> str:
    """Remove trailing truncation markers left by an earlier cut."""
    stripped = text.rstrip()
    for marker in (SECTION_TRUNCATION_MARKER, TRUNCATION_MARKER):
        if stripped.endswith(marker):
            return stripped[: -len(marker)].rstrip()
    return text
