# chuk_prompt_experiments/context/models.py
"""
Core models for context budgeting and assembly.

- TokenBudget: total size, per-category fractions and minimum floors
- ContextComponent: one named block of prompt text with its token count
- AssembledContext: the ordered, budget-checked result of an assembly
- BudgetOverflowNotice: non-fatal signal that a result is still over budget

Design principles:
- Pydantic-native: All models are BaseModel subclasses
- No magic strings: Enums for categories, priorities and content kinds
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

# =============================================================================
# Enums
# =============================================================================


class ContextPriority(IntEnum):
    """
    Priority tiers for context components.

    Lower value = more important. Truncation starts from the highest value.
    """

    CRITICAL = 1  # Must be included (task description, core content)
    HIGH = 2  # Should be included (meta hints, examples)
    MEDIUM = 3  # Include if space allows
    LOW = 4  # Include only if plenty of space


class BudgetCategory(str, Enum):
    """Token budget categories."""

    TASK = "task"
    CONTENT = "content"
    EXAMPLES = "examples"
    META = "meta"
    BUFFER = "buffer"


class ContentKind(str, Enum):
    """Kinds of text that tokenize at different effective densities."""

    PROSE = "prose"
    CODE = "code"
    JSON = "json"
    MARKDOWN = "markdown"
    TECHNICAL = "technical"


class ModelFamily(str, Enum):
    """Model families with known tokenizer differences."""

    GEMINI = "gemini"
    GPT = "gpt"
    CLAUDE = "claude"
    DEFAULT = "default"


# =============================================================================
# Constants
# =============================================================================

TRUNCATION_MARKER = "[Content truncated]"
SECTION_TRUNCATION_MARKER = "[Content truncated for token budget]"


# =============================================================================
# Inputs
# =============================================================================


class ResearchFile(BaseModel):
    """A named research document supplied by the caller."""

    name: str
    text: str = ""


# =============================================================================
# Token Budget
# =============================================================================


class TokenBudget(BaseModel):
    """
    Token budget split across categories.

    Allocations are ``max(minimum, floor(total * fraction))``; if the floors
    push the sum past the total, the excess is taken back from the
    categories sitting above their floor.
    """

    total_tokens: int = Field(default=8000, gt=0, description="Total token budget")
    allocations: dict[str, float] = Field(
        default_factory=lambda: {
            BudgetCategory.TASK.value: 0.15,
            BudgetCategory.CONTENT.value: 0.50,
            BudgetCategory.EXAMPLES.value: 0.15,
            BudgetCategory.META.value: 0.10,
            BudgetCategory.BUFFER.value: 0.10,
        },
        description="Fraction of the total per category",
    )
    minimums: dict[str, int] = Field(
        default_factory=lambda: {
            BudgetCategory.TASK.value: 200,
            BudgetCategory.CONTENT.value: 1000,
            BudgetCategory.META.value: 100,
        },
        description="Absolute token floor per category",
    )

    @model_validator(mode="after")
    def _check_shape(self) -> TokenBudget:
        for key, fraction in self.allocations.items():
            if not 0.0 <= fraction <= 1.0:
                raise ValueError(f"allocation for '{key}' must be within [0, 1], got {fraction}")
        if sum(self.allocations.values()) > 1.0 + 1e-9:
            raise ValueError("allocation fractions must not sum to more than 1.0")
        if any(v < 0 for v in self.minimums.values()):
            raise ValueError("minimums must be non-negative")
        if sum(self.minimums.values()) > self.total_tokens:
            raise ValueError(
                f"minimums ({sum(self.minimums.values())}) exceed total budget ({self.total_tokens})"
            )
        return self

    def with_total(self, total_tokens: int) -> TokenBudget:
        """Copy of this budget with a new total; floors shrink proportionally if they no longer fit."""
        minimums = dict(self.minimums)
        floor_sum = sum(minimums.values())
        if floor_sum > total_tokens:
            scale = total_tokens / floor_sum
            minimums = {k: int(v * scale) for k, v in minimums.items()}
        return TokenBudget(total_tokens=total_tokens, allocations=dict(self.allocations), minimums=minimums)

    def allocate(self) -> dict[str, int]:
        """Absolute per-category token counts. Never sums past ``total_tokens``."""
        keys = list(dict.fromkeys([*self.allocations, *self.minimums]))
        result = {
            key: max(self.minimums.get(key, 0), math.floor(self.total_tokens * self.allocations.get(key, 0.0)))
            for key in keys
        }

        excess = sum(result.values()) - self.total_tokens
        if excess <= 0:
            return result

        slack = {key: result[key] - self.minimums.get(key, 0) for key in keys}
        total_slack = sum(slack.values())
        cuts = {key: min(slack[key], (excess * slack[key]) // total_slack) for key in keys}
        remaining = excess - sum(cuts.values())

        # Integer rounding leaves a few tokens; take them from the largest slack first
        for key in sorted(keys, key=lambda k: slack[k] - cuts[k], reverse=True):
            if remaining <= 0:
                break
            extra = min(remaining, slack[key] - cuts[key])
            cuts[key] += extra
            remaining -= extra

        return {key: result[key] - cuts[key] for key in keys}


class BudgetAllocation(BaseModel):
    """Strategy budget converted to absolute token counts."""

    total: int
    percentages: dict[str, float] = Field(default_factory=dict)
    absolute: dict[str, int] = Field(default_factory=dict)


# =============================================================================
# Token estimation results
# =============================================================================


class TokenCount(BaseModel):
    """Detailed token estimate for a piece of text."""

    tokens: int = 0
    characters: int = 0
    words: int = 0
    method: str = "char-ratio"


class BudgetFit(BaseModel):
    """Whether a text fits a token budget."""

    fits: bool
    tokens: int
    budget: int
    overage: int = 0
    utilization: float = Field(default=0.0, description="tokens / budget")


class CapacityEstimate(BaseModel):
    """Approximate character allowance for a token budget."""

    token_budget: int
    estimated_characters: int
    estimated_words: int
    content_kind: ContentKind = ContentKind.PROSE


# =============================================================================
# Assembly
# =============================================================================


class ContextComponent(BaseModel):
    """One named block of prompt text."""

    name: str
    content: str = ""
    tokens: int = Field(default=0, ge=0)
    priority: ContextPriority = ContextPriority.MEDIUM
    truncatable: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class BudgetOverflowNotice(BaseModel):
    """Surfaced when truncation could not bring an assembly under budget."""

    budget: int
    total_tokens: int
    overage: int
    reason: str = "non-truncatable components exceed the budget"


class AssembledContext(BaseModel):
    """Result of assembling components under a token budget."""

    components: list[ContextComponent] = Field(default_factory=list)
    total_tokens: int = 0
    budget_tokens: int = 0
    budget_used: float = Field(default=0.0, description="total_tokens / budget (may exceed 1.0)")
    truncated_components: list[str] = Field(default_factory=list)
    excluded_components: list[str] = Field(default_factory=list)
    overflow: BudgetOverflowNotice | None = None
    task_type: str = ""
    file_count: int = 0
    allocations: dict[str, int] = Field(default_factory=dict)
    assembled_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def over_budget(self) -> bool:
        return self.overflow is not None

    def get_component(self, name: str) -> ContextComponent | None:
        for component in self.components:
            if component.name == name:
                return component
        return None


class PriorityBucket(BaseModel):
    count: int = 0
    tokens: int = 0


class AssemblyStats(BaseModel):
    """Summary of an AssembledContext for logs and dashboards."""

    total_components: int
    total_tokens: int
    budget_utilization: str
    by_priority: dict[str, PriorityBucket] = Field(default_factory=dict)
    by_name: dict[str, int] = Field(default_factory=dict)
    truncated: int = 0
    excluded: int = 0


class TokenUsage(BaseModel):
    budget: int
    used: int = 0
    available: int = 0
    utilization: float = 0.0


class ContextResult(BaseModel):
    """Output of the full context pipeline."""

    prompt: str
    context: AssembledContext
    strategy_name: str
    token_usage: TokenUsage
    processing_time_ms: float = 0.0
