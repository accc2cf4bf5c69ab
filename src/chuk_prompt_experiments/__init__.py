# chuk_prompt_experiments/__init__.py
"""
Adaptive prompt experimentation.

- context: token estimation, strategies and budgeted context assembly
- variants: prompt variants, tiered weighted selection and lifecycle
- metrics: generation metrics, aggregation and A/B comparison
- experiment: the per-request facade wiring the three together
"""

from .exceptions import (
    NoActiveVariantsError,
    NotFoundError,
    PersistenceError,
    PromptExperimentError,
    ValidationError,
)
from .experiment import EvaluationResult, ExperimentService, PreparedGeneration

__version__ = "0.1.0"

__all__ = [
    "ExperimentService",
    "PreparedGeneration",
    "EvaluationResult",
    # Errors
    "PromptExperimentError",
    "ValidationError",
    "NotFoundError",
    "NoActiveVariantsError",
    "PersistenceError",
]
