# chuk_prompt_experiments/context/strategies.py
"""
Strategy Table - per task-type context configuration.

Each strategy carries the budget shape (total + category fractions), the
instruction blocks used to build the task description, a short goal hint
for the meta component and an optional deterministic preprocessing step
applied to research text before assembly.

Lookups never fail: unknown task types resolve to the default strategy.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

from .models import BudgetAllocation, BudgetCategory, TokenBudget

logger = logging.getLogger(__name__)

Preprocessor = Callable[[str], str]


class StrategyType(str, Enum):
    """Known task types."""

    ROADMAP = "roadmap"
    SLIDES = "slides"
    DOCUMENT = "document"
    RESEARCH_ANALYSIS = "research-analysis"
    QA = "qa"
    DEFAULT = "default"


# Floors applied to every strategy budget
STRATEGY_MINIMUMS: dict[str, int] = {
    BudgetCategory.TASK.value: 200,
    BudgetCategory.CONTENT.value: 500,
    BudgetCategory.META.value: 50,
}


class TaskInstructions(BaseModel):
    """Free-text instruction blocks for a task type."""

    focus: str
    constraints: list[str] = Field(default_factory=list)
    format: str = "Structured output"
    output_guidance: str = ""


class ContextStrategy(BaseModel):
    """Configuration for one task type."""

    name: str
    budget: TokenBudget
    instructions: TaskInstructions
    goal: str = ""
    preprocess: Preprocessor | None = Field(default=None, exclude=True)

    model_config = {"arbitrary_types_allowed": True}


def _budget(total: int, task: float, content: float, examples: float, meta: float, buffer: float = 0.10) -> TokenBudget:
    return TokenBudget(
        total_tokens=total,
        allocations={
            BudgetCategory.TASK.value: task,
            BudgetCategory.CONTENT.value: content,
            BudgetCategory.EXAMPLES.value: examples,
            BudgetCategory.META.value: meta,
            BudgetCategory.BUFFER.value: buffer,
        },
        minimums=dict(STRATEGY_MINIMUMS),
    )


# =============================================================================
# Preprocessors
# =============================================================================

_DATE_RE = re.compile(r"(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})")
_QUARTER_RE = re.compile(r"([QH][1-4]\s*\d{4})", re.IGNORECASE)
_TIMELINE_WORD_RE = re.compile(r"\b(deadline|milestone|phase|stage)\b", re.IGNORECASE)

_SLIDE_PATTERNS = [
    re.compile(r"summary", re.IGNORECASE),
    re.compile(r"key\s*(?:finding|point|takeaway)", re.IGNORECASE),
    re.compile(r"recommend", re.IGNORECASE),
    re.compile(r"conclusion", re.IGNORECASE),
    re.compile(r"\d+%"),
    re.compile(r"\$[\d,]+"),
]

_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_SOURCE_RE = re.compile(r"source:|according to|cited from", re.IGNORECASE)


def mark_timeline_terms(content: str) -> str:
    """Highlight dates, quarters and schedule words for timeline extraction."""
    content = _DATE_RE.sub(r"**DATE: \1**", content)
    content = _QUARTER_RE.sub(r"**QUARTER: \1**", content)
    return _TIMELINE_WORD_RE.sub(r"**\1**", content)


def mark_executive_terms(content: str) -> str:
    """Highlight summary/recommendation keywords and headline figures."""
    for pattern in _SLIDE_PATTERNS:
        content = pattern.sub(lambda m: f"**{m.group(0)}**", content)
    return content


def append_source_metadata(content: str) -> str:
    """Append counts of year references and source citations."""
    years = len(_YEAR_RE.findall(content))
    sources = len(_SOURCE_RE.findall(content))
    return (
        f"{content}\n\n---\nMETADATA:\n"
        f"- Year references found: {years}\n"
        f"- Source citations found: {sources}"
    )


# =============================================================================
# Default table
# =============================================================================

DEFAULT_STRATEGIES: dict[str, ContextStrategy] = {
    StrategyType.ROADMAP.value: ContextStrategy(
        name="Roadmap Generation",
        budget=_budget(12000, task=0.10, content=0.60, examples=0.10, meta=0.10),
        instructions=TaskInstructions(
            focus="Extract timeline, milestones, and dependencies from research",
            constraints=[
                "Identify all dates and temporal references",
                "Group related tasks into swimlanes",
                "Maintain chronological accuracy",
                "Preserve entity relationships",
            ],
            format="Gantt chart JSON structure",
            output_guidance=(
                "Focus on extracting:\n"
                "- Key milestones and deadlines\n"
                "- Project phases and their durations\n"
                "- Dependencies between tasks\n"
                "- Entity/stakeholder assignments"
            ),
        ),
        goal="Generate a structured timeline with clear milestones and dependencies.",
        preprocess=mark_timeline_terms,
    ),
    StrategyType.SLIDES.value: ContextStrategy(
        name="Slides Generation",
        budget=_budget(6000, task=0.15, content=0.45, examples=0.15, meta=0.15),
        instructions=TaskInstructions(
            focus="Extract key points and insights for executive presentation",
            constraints=[
                "Prioritize high-level insights over details",
                "Focus on actionable takeaways",
                "Maintain narrative flow",
                "Limit to 6 slides",
            ],
            format="6-slide presentation structure",
            output_guidance=(
                "Focus on extracting:\n"
                "- Executive summary points\n"
                "- Key findings (3-5 max)\n"
                "- Recommendations\n"
                "- Visual-friendly data points"
            ),
        ),
        goal="Create a concise 6-slide presentation with key insights.",
        preprocess=mark_executive_terms,
    ),
    StrategyType.DOCUMENT.value: ContextStrategy(
        name="Document Generation",
        budget=_budget(10000, task=0.12, content=0.55, examples=0.12, meta=0.11),
        instructions=TaskInstructions(
            focus="Create comprehensive document with structured sections",
            constraints=[
                "Maintain logical section flow",
                "Include supporting details",
                "Preserve important quotes and data",
                "Cross-reference related content",
            ],
            format="Multi-section document",
            output_guidance=(
                "Structure should include:\n"
                "- Executive summary\n"
                "- Background/context\n"
                "- Key findings with details\n"
                "- Analysis and implications\n"
                "- Recommendations"
            ),
        ),
        goal="Produce a comprehensive document with clear sections.",
    ),
    StrategyType.RESEARCH_ANALYSIS.value: ContextStrategy(
        name="Research Analysis",
        budget=_budget(8000, task=0.15, content=0.55, examples=0.10, meta=0.10),
        instructions=TaskInstructions(
            focus="Evaluate research quality and fitness for analysis",
            constraints=[
                "Assess source credibility",
                "Identify gaps in coverage",
                "Rate temporal relevance",
                "Evaluate data quality",
            ],
            format="Quality assessment report",
            output_guidance=(
                "Evaluate:\n"
                "- Completeness of information\n"
                "- Currency/timeliness of data\n"
                "- Source reliability\n"
                "- Coverage breadth"
            ),
        ),
        goal="Analyze the research quality and provide recommendations.",
        preprocess=append_source_metadata,
    ),
    StrategyType.QA.value: ContextStrategy(
        name="Question Answering",
        budget=_budget(4000, task=0.20, content=0.50, examples=0.10, meta=0.10),
        instructions=TaskInstructions(
            focus="Answer specific question based on research context",
            constraints=[
                "Stay focused on the question",
                "Cite relevant sources",
                "Be concise but complete",
                "Acknowledge uncertainty",
            ],
            format="Direct answer with supporting context",
        ),
        goal="Answer the question directly with supporting evidence.",
    ),
    StrategyType.DEFAULT.value: ContextStrategy(
        name="Default Strategy",
        budget=_budget(8000, task=0.15, content=0.50, examples=0.15, meta=0.10),
        instructions=TaskInstructions(focus="Process research content as requested"),
    ),
}


class StrategyTable:
    """
    Lookup table from task type to ContextStrategy.

    Starts from ``DEFAULT_STRATEGIES``; custom strategies can be
    registered per instance without touching the module defaults.
    """

    def __init__(self, strategies: dict[str, ContextStrategy] | None = None) -> None:
        self._strategies: dict[str, ContextStrategy] = dict(DEFAULT_STRATEGIES)
        if strategies:
            self._strategies.update(strategies)

    def get_strategy(self, task_type: str | None) -> ContextStrategy:
        strategy = self._strategies.get(task_type or "")
        if strategy is None:
            logger.debug(f"No strategy for task type {task_type!r}, using default")
            return self._strategies[StrategyType.DEFAULT.value]
        return strategy

    def register_strategy(self, task_type: str, strategy: ContextStrategy) -> None:
        self._strategies[task_type] = strategy

    def list_task_types(self) -> list[str]:
        return list(self._strategies)

    def get_budget(self, task_type: str | None, total_tokens_override: int | None = None) -> TokenBudget:
        budget = self.get_strategy(task_type).budget
        if total_tokens_override:
            return budget.with_total(total_tokens_override)
        return budget

    def get_budget_allocation(
        self,
        task_type: str | None,
        total_tokens_override: int | None = None,
    ) -> BudgetAllocation:
        """Strategy fractions converted to absolute token counts."""
        budget = self.get_budget(task_type, total_tokens_override)
        return BudgetAllocation(
            total=budget.total_tokens,
            percentages=dict(budget.allocations),
            absolute=budget.allocate(),
        )

    def get_task_instructions(self, task_type: str | None) -> TaskInstructions:
        return self.get_strategy(task_type).instructions

    def apply_preprocessing(self, content: str, task_type: str | None) -> str:
        preprocess = self.get_strategy(task_type).preprocess
        return preprocess(content) if preprocess else content

    def build_task_description(self, task_type: str | None, user_prompt: str = "") -> str:
        """Task description with strategy focus, constraints and guidance."""
        instructions = self.get_task_instructions(task_type)
        parts = [f"**Task Focus**: {instructions.focus}", ""]

        if instructions.constraints:
            parts.append("**Constraints**:")
            parts.extend(f"- {c}" for c in instructions.constraints)
            parts.append("")

        if instructions.output_guidance:
            parts.append("**Output Guidance**:")
            parts.append(instructions.output_guidance.strip())
            parts.append("")

        if user_prompt:
            parts.append("**Additional Instructions**:")
            parts.append(user_prompt)

        return "\n".join(parts).rstrip()
