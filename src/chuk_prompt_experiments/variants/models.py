# chuk_prompt_experiments/variants/models.py
"""
Variant models.

A variant is one prompt template competing for traffic within a content
type. Its status drives selection tiers; its performance record is
updated online from generation outcomes.

Lifecycle:
    active -> candidate -> champion -> retired
    active <-> paused
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class ContentType(str, Enum):
    """Content types that variants compete within."""

    ROADMAP = "Roadmap"
    SLIDES = "Slides"
    DOCUMENT = "Document"
    RESEARCH_ANALYSIS = "ResearchAnalysis"


class VariantStatus(str, Enum):
    """Lifecycle status of a variant."""

    ACTIVE = "active"
    CANDIDATE = "candidate"
    CHAMPION = "champion"
    RETIRED = "retired"
    PAUSED = "paused"

    @property
    def selectable(self) -> bool:
        return self in SELECTABLE_STATUSES


SELECTABLE_STATUSES = frozenset({VariantStatus.ACTIVE, VariantStatus.CANDIDATE, VariantStatus.CHAMPION})

# Allowed explicit status writes (promotion demotes rivals separately).
# Candidates may pause too; resume always lands on active, so a paused
# candidate must be re-nominated with set_as_candidate.
ALLOWED_TRANSITIONS: dict[VariantStatus, frozenset[VariantStatus]] = {
    VariantStatus.ACTIVE: frozenset(
        {VariantStatus.CANDIDATE, VariantStatus.CHAMPION, VariantStatus.PAUSED, VariantStatus.RETIRED}
    ),
    VariantStatus.CANDIDATE: frozenset(
        {VariantStatus.ACTIVE, VariantStatus.CHAMPION, VariantStatus.PAUSED, VariantStatus.RETIRED}
    ),
    VariantStatus.CHAMPION: frozenset({VariantStatus.RETIRED}),
    VariantStatus.PAUSED: frozenset({VariantStatus.ACTIVE, VariantStatus.RETIRED}),
    VariantStatus.RETIRED: frozenset(),
}


# =============================================================================
# Variant
# =============================================================================


class VariantMetadata(BaseModel):
    """Free-form descriptive metadata."""

    version: str = "1.0.0"
    author: str = "system"
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    parent_id: str | None = Field(default=None, description="Variant this one was derived from")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    extra: dict[str, Any] = Field(default_factory=dict)


class VariantPerformance(BaseModel):
    """Online performance record."""

    impressions: int = Field(default=0, ge=0)
    conversions: int = Field(default=0, ge=0)
    avg_latency_ms: float = Field(default=0.0, ge=0)
    avg_quality_score: float = Field(default=0.0, ge=0)
    feedback_sum: float = 0.0
    feedback_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)

    @property
    def avg_feedback(self) -> float | None:
        if self.feedback_count == 0:
            return None
        return self.feedback_sum / self.feedback_count

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.impressions if self.impressions else 0.0


class Variant(BaseModel):
    """A prompt template competing for traffic."""

    id: str = Field(min_length=1)
    name: str = ""
    content_type: str = Field(min_length=1)
    status: VariantStatus = VariantStatus.ACTIVE
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    prompt_template: str = ""
    metadata: VariantMetadata = Field(default_factory=VariantMetadata)
    performance: VariantPerformance = Field(default_factory=VariantPerformance)

    @model_validator(mode="after")
    def _default_name(self) -> Variant:
        if not self.name:
            self.name = self.id
        return self

    @property
    def is_selectable(self) -> bool:
        return self.status.selectable

    def touch(self) -> None:
        self.metadata.updated_at = _now()


class PerformanceUpdate(BaseModel):
    """One observation to fold into a variant's performance record."""

    latency_ms: float | None = Field(default=None, ge=0)
    quality_score: float | None = Field(default=None, ge=0)
    feedback: float | None = Field(default=None, ge=1, le=5)
    success: bool = False
    error: bool = False


# =============================================================================
# Selection / stats
# =============================================================================


class SelectionRecord(BaseModel):
    """One entry in the bounded selection history."""

    timestamp: datetime = Field(default_factory=_now)
    content_type: str
    variant_id: str
    forced: bool = False


class ContentTypeStats(BaseModel):
    total: int = 0
    selectable: int = 0
    champion: str | None = None


class RegistryStats(BaseModel):
    """Summary of the registry for dashboards."""

    total_variants: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_content_type: dict[str, ContentTypeStats] = Field(default_factory=dict)
    champions: dict[str, str] = Field(default_factory=dict)
    total_impressions: int = 0
    selection_history_size: int = 0


class RegistrySnapshot(BaseModel):
    """Versioned, self-contained registry document."""

    version: str = "1.0.0"
    saved_at: datetime = Field(default_factory=_now)
    variants: list[Variant] = Field(default_factory=list)
