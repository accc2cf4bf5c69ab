# chuk_prompt_experiments/context/__init__.py
"""
Context budgeting and assembly.

Usage:
    from chuk_prompt_experiments.context import (
        ContextAssembler,
        ContextPipeline,
        StrategyTable,
        TokenEstimator,
    )

    estimator = TokenEstimator()
    strategies = StrategyTable()
    pipeline = ContextPipeline(estimator, ContextAssembler(estimator, strategies), strategies)
    result = pipeline.process(files, "Focus on Q3", task_type="roadmap")
"""

from .assembler import AssemblerConfig, ContextAssembler
from .models import (
    SECTION_TRUNCATION_MARKER,
    TRUNCATION_MARKER,
    AssembledContext,
    AssemblyStats,
    BudgetAllocation,
    BudgetCategory,
    BudgetFit,
    BudgetOverflowNotice,
    CapacityEstimate,
    ContentKind,
    ContextComponent,
    ContextPriority,
    ContextResult,
    ModelFamily,
    ResearchFile,
    TokenBudget,
    TokenCount,
    TokenUsage,
)
from .pipeline import ContextPipeline
from .strategies import (
    DEFAULT_STRATEGIES,
    ContextStrategy,
    StrategyTable,
    StrategyType,
    TaskInstructions,
)
from .token_estimator import TokenEstimator, TokenEstimatorConfig

__all__ = [
    # Estimation
    "TokenEstimator",
    "TokenEstimatorConfig",
    "TokenCount",
    "BudgetFit",
    "CapacityEstimate",
    "ContentKind",
    "ModelFamily",
    # Budget
    "TokenBudget",
    "BudgetAllocation",
    "BudgetCategory",
    # Assembly
    "ContextAssembler",
    "AssemblerConfig",
    "AssembledContext",
    "AssemblyStats",
    "BudgetOverflowNotice",
    "ContextComponent",
    "ContextPriority",
    "ResearchFile",
    "TRUNCATION_MARKER",
    "SECTION_TRUNCATION_MARKER",
    # Strategies
    "StrategyTable",
    "StrategyType",
    "ContextStrategy",
    "TaskInstructions",
    "DEFAULT_STRATEGIES",
    # Pipeline
    "ContextPipeline",
    "ContextResult",
    "TokenUsage",
]
