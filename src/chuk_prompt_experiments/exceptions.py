# chuk_prompt_experiments/exceptions.py
"""
Exception hierarchy for the prompt experimentation engine.

Budget overflow has no exception class: an assembled context that is
still over budget carries a ``BudgetOverflowNotice`` instead of raising.
"""

from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError


class PromptExperimentError(Exception):
    """Base class for all errors raised by chuk_prompt_experiments."""


class ValidationError(PromptExperimentError):
    """A payload is missing a required identifier or carries a bad value."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> ValidationError:
        """Wrap a pydantic error, naming the first offending field."""
        errors = error.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        return cls(f"Invalid {field or 'payload'}: {first.get('msg', error)}", field=field)


class NotFoundError(PromptExperimentError):
    """An update referenced an unknown variant or generation."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class NoActiveVariantsError(PromptExperimentError):
    """Selection was requested for a content type with nothing selectable."""

    def __init__(self, content_type: str) -> None:
        super().__init__(f"No selectable variants for content type '{content_type}'")
        self.content_type = content_type


class PersistenceError(PromptExperimentError):
    """A flush or snapshot write failed after all retries.

    The data involved is kept by the caller and retried on the next cycle.
    """

    def __init__(self, operation: str, attempts: int, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation} failed after {attempts} attempt(s){detail}")
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
