# chuk_prompt_experiments/variants/registry.py
"""
Variant Registry - tiered weighted selection and lifecycle.

Selection:
1. Gather selectable variants (active, candidate, champion) of a content type.
2. Give each tier its aggregate mass (champion 0.7, candidate 0.2, active 0.1).
3. Split a tier's mass across members by weight (equally if all are 0).
4. Normalize to sum to 1, draw once, walk the cumulative distribution.

Empty tiers contribute nothing and the normalization step spreads their
mass proportionally over the tiers that are present.

Concurrency:
All reads and writes of the variant map, the content-type index and the
champion index happen under one re-entrant lock, so a selection never
observes a content type with zero or two champions mid-promotion.
Snapshot I/O runs outside the lock on a copy taken under it.

Design principles:
- Explicit construction: no module-level registry instance
- Callers get deep copies; internal state is never handed out
"""

from __future__ import annotations

import logging
import random
import threading
from collections import deque
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from chuk_prompt_experiments.config import PERSIST_MAX_RETRIES, PERSIST_TIMEOUT
from chuk_prompt_experiments.exceptions import (
    NoActiveVariantsError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from chuk_prompt_experiments.retry import SleepFunc, retry_with_backoff

from .models import (
    ALLOWED_TRANSITIONS,
    ContentTypeStats,
    PerformanceUpdate,
    RegistrySnapshot,
    RegistryStats,
    SelectionRecord,
    Variant,
    VariantStatus,
)
from .persistence import InMemorySnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class TierWeights(BaseModel):
    """Aggregate probability mass per selection tier."""

    champion: float = Field(default=0.7, ge=0)
    candidate: float = Field(default=0.2, ge=0)
    active: float = Field(default=0.1, ge=0)

    @model_validator(mode="after")
    def _check_positive(self) -> TierWeights:
        if self.champion + self.candidate + self.active <= 0:
            raise ValueError("at least one tier must carry probability mass")
        return self

    def for_status(self, status: VariantStatus) -> float:
        if status == VariantStatus.CHAMPION:
            return self.champion
        if status == VariantStatus.CANDIDATE:
            return self.candidate
        return self.active


class RegistryConfig(BaseModel):
    """Configuration for the variant registry."""

    tier_weights: TierWeights = Field(default_factory=TierWeights)
    history_limit: int = Field(default=1000, ge=0, description="Selection history entries kept")
    persist_timeout: float = Field(default=PERSIST_TIMEOUT, gt=0)
    persist_max_retries: int = Field(default=PERSIST_MAX_RETRIES, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)


class VariantRegistry:
    """
    Holds every prompt variant, selects one per request and manages lifecycle.

    Usage::

        registry = VariantRegistry()
        registry.register(Variant(id="roadmap-v1", content_type="Roadmap",
                                  status=VariantStatus.CHAMPION))
        variant = registry.select("Roadmap")
        registry.update_performance(variant.id, latency_ms=1200, quality_score=0.9)
        await registry.save()
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        store: SnapshotStore | None = None,
        rng: random.Random | None = None,
        sleep_func: SleepFunc | None = None,
    ) -> None:
        self.config = config or RegistryConfig()
        self.store = store or InMemorySnapshotStore()
        self._rng = rng or random.Random()
        self._sleep_func = sleep_func

        self._lock = threading.RLock()
        self._variants: dict[str, Variant] = {}
        self._by_content_type: dict[str, list[str]] = {}
        self._champions: dict[str, str] = {}
        self._history: deque[SelectionRecord] = deque(maxlen=self.config.history_limit)

    # =========================================================================
    # Registration and lookup
    # =========================================================================

    def register(self, variant: Variant | dict[str, Any]) -> Variant:
        """
        Add a variant.

        Raises:
            ValidationError: duplicate id, second champion for the content
                type, or a malformed payload
        """
        variant = _coerce_variant(variant)
        with self._lock:
            if variant.id in self._variants:
                raise ValidationError(f"Variant already registered: {variant.id}", field="id")
            if variant.status == VariantStatus.CHAMPION and variant.content_type in self._champions:
                existing = self._champions[variant.content_type]
                raise ValidationError(
                    f"Content type '{variant.content_type}' already has champion '{existing}'",
                    field="status",
                )
            self._index(variant)
            logger.debug(f"Registered variant {variant.id} ({variant.content_type}, {variant.status.value})")
            return variant.model_copy(deep=True)

    def get_variant(self, variant_id: str) -> Variant | None:
        with self._lock:
            variant = self._variants.get(variant_id)
            return variant.model_copy(deep=True) if variant else None

    def get_variants(self, content_type: str, include_retired: bool = True) -> list[Variant]:
        with self._lock:
            return [
                v.model_copy(deep=True)
                for v in self._members(content_type)
                if include_retired or v.status != VariantStatus.RETIRED
            ]

    def get_selectable_variants(self, content_type: str) -> list[Variant]:
        with self._lock:
            return [v.model_copy(deep=True) for v in self._members(content_type) if v.is_selectable]

    def get_champion(self, content_type: str) -> Variant | None:
        with self._lock:
            champion_id = self._champions.get(content_type)
            return self._variants[champion_id].model_copy(deep=True) if champion_id else None

    def list_content_types(self) -> list[str]:
        with self._lock:
            return list(self._by_content_type)

    def __len__(self) -> int:
        return len(self._variants)

    def __contains__(self, variant_id: object) -> bool:
        return variant_id in self._variants

    # =========================================================================
    # Selection
    # =========================================================================

    def selection_probabilities(self, content_type: str) -> dict[str, float]:
        """Normalized selection probability per selectable variant id."""
        with self._lock:
            return self._probabilities([v for v in self._members(content_type) if v.is_selectable])

    def select(self, content_type: str, forced_variant_id: str | None = None) -> Variant:
        """
        Pick a variant for one request and count the impression.

        ``forced_variant_id`` bypasses the weighting when it names a
        selectable variant of this content type; otherwise it is ignored
        with a warning.

        Raises:
            NoActiveVariantsError: nothing selectable for ``content_type``
        """
        with self._lock:
            selectable = [v for v in self._members(content_type) if v.is_selectable]
            if not selectable:
                raise NoActiveVariantsError(content_type)

            chosen: Variant | None = None
            forced = False
            if forced_variant_id is not None:
                chosen = next((v for v in selectable if v.id == forced_variant_id), None)
                if chosen is None:
                    logger.warning(
                        f"Forced variant '{forced_variant_id}' is not selectable for "
                        f"'{content_type}', using weighted selection"
                    )
                forced = chosen is not None

            if chosen is None:
                chosen = selectable[0] if len(selectable) == 1 else self._draw(selectable)

            chosen.performance.impressions += 1
            self._history.append(
                SelectionRecord(content_type=content_type, variant_id=chosen.id, forced=forced)
            )
            return chosen.model_copy(deep=True)

    def _probabilities(self, selectable: list[Variant]) -> dict[str, float]:
        tiers: dict[VariantStatus, list[Variant]] = {}
        for variant in selectable:
            tiers.setdefault(variant.status, []).append(variant)

        raw: dict[str, float] = {}
        for status, members in tiers.items():
            mass = self.config.tier_weights.for_status(status)
            total_weight = sum(v.weight for v in members)
            for v in members:
                raw[v.id] = mass * v.weight / total_weight if total_weight > 0 else mass / len(members)

        total = sum(raw.values())
        if total <= 0:
            # Only zero-mass tiers present
            return {v.id: 1.0 / len(selectable) for v in selectable} if selectable else {}
        return {vid: p / total for vid, p in raw.items()}

    def _draw(self, selectable: list[Variant]) -> Variant:
        probabilities = self._probabilities(selectable)
        roll = self._rng.random()
        cumulative = 0.0
        for variant in selectable:
            cumulative += probabilities[variant.id]
            if roll < cumulative:
                return variant
        # Float rounding can leave the cumulative sum a hair under 1.0
        return next(v for v in reversed(selectable) if probabilities[v.id] > 0)

    def get_selection_history(
        self,
        content_type: str | None = None,
        variant_id: str | None = None,
        limit: int | None = None,
    ) -> list[SelectionRecord]:
        """Most recent selections last, optionally filtered."""
        with self._lock:
            records = [
                r
                for r in self._history
                if (content_type is None or r.content_type == content_type)
                and (variant_id is None or r.variant_id == variant_id)
            ]
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return [r.model_copy() for r in records]

    # =========================================================================
    # Performance
    # =========================================================================

    def update_performance(
        self,
        variant_id: str,
        metrics: PerformanceUpdate | None = None,
        **fields: Any,
    ) -> Variant:
        """
        Fold one observation into the variant's performance record.

        Latency and quality use a moving average over the impression count;
        feedback accumulates sum and count. Weight is never touched here.

        Raises:
            NotFoundError: unknown variant id
            ValidationError: malformed observation
        """
        if metrics is None:
            try:
                metrics = PerformanceUpdate(**fields)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e

        with self._lock:
            variant = self._require(variant_id)
            perf = variant.performance
            n = perf.impressions or 1

            if metrics.latency_ms is not None:
                perf.avg_latency_ms = ((perf.avg_latency_ms * (n - 1)) + metrics.latency_ms) / n
            if metrics.quality_score is not None:
                perf.avg_quality_score = ((perf.avg_quality_score * (n - 1)) + metrics.quality_score) / n
            if metrics.feedback is not None:
                perf.feedback_sum += metrics.feedback
                perf.feedback_count += 1
            if metrics.success:
                perf.conversions += 1
            if metrics.error:
                perf.error_count += 1

            variant.touch()
            return variant.model_copy(deep=True)

    def update_weight(self, variant_id: str, weight: float) -> Variant:
        """Operator action: set traffic weight, clamped to [0, 1]."""
        with self._lock:
            variant = self._require(variant_id)
            variant.weight = min(1.0, max(0.0, float(weight)))
            variant.touch()
            logger.info(f"Variant {variant_id} weight set to {variant.weight:.2f}")
            return variant.model_copy(deep=True)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def promote_to_champion(self, variant_id: str) -> bool:
        """
        Make ``variant_id`` the champion of its content type.

        The previous champion, if any, is retired in the same critical
        section. Returns False when the variant is paused or retired.
        """
        with self._lock:
            variant = self._require(variant_id)
            if variant.status == VariantStatus.CHAMPION:
                return True
            if VariantStatus.CHAMPION not in ALLOWED_TRANSITIONS[variant.status]:
                logger.warning(f"Cannot promote {variant_id} from status '{variant.status.value}'")
                return False

            previous_id = self._champions.get(variant.content_type)
            if previous_id and previous_id != variant_id:
                previous = self._variants[previous_id]
                previous.status = VariantStatus.RETIRED
                previous.touch()
                logger.info(f"Retired previous champion {previous_id} for {variant.content_type}")

            variant.status = VariantStatus.CHAMPION
            variant.touch()
            self._champions[variant.content_type] = variant_id
            logger.info(f"Promoted {variant_id} to champion for {variant.content_type}")
            return True

    def set_as_candidate(self, variant_id: str) -> bool:
        return self._transition(variant_id, VariantStatus.CANDIDATE)

    def pause(self, variant_id: str) -> bool:
        return self._transition(variant_id, VariantStatus.PAUSED)

    def resume(self, variant_id: str) -> bool:
        """Paused -> active. Any other starting status is refused."""
        with self._lock:
            if self._require(variant_id).status != VariantStatus.PAUSED:
                return False
            return self._transition(variant_id, VariantStatus.ACTIVE)

    def retire(self, variant_id: str) -> bool:
        """Permanently exclude from selection; kept for audit."""
        return self._transition(variant_id, VariantStatus.RETIRED)

    def _transition(self, variant_id: str, target: VariantStatus) -> bool:
        with self._lock:
            variant = self._require(variant_id)
            if target not in ALLOWED_TRANSITIONS[variant.status]:
                logger.warning(
                    f"Refused transition {variant.status.value} -> {target.value} for variant {variant_id}"
                )
                return False

            if variant.status == VariantStatus.CHAMPION and self._champions.get(variant.content_type) == variant_id:
                del self._champions[variant.content_type]

            variant.status = target
            variant.touch()
            logger.debug(f"Variant {variant_id} is now {target.value}")
            return True

    # =========================================================================
    # Stats and housekeeping
    # =========================================================================

    def get_stats(self) -> RegistryStats:
        with self._lock:
            by_status: dict[str, int] = {}
            by_content_type: dict[str, ContentTypeStats] = {}
            for variant in self._variants.values():
                by_status[variant.status.value] = by_status.get(variant.status.value, 0) + 1
                stats = by_content_type.setdefault(variant.content_type, ContentTypeStats())
                stats.total += 1
                if variant.is_selectable:
                    stats.selectable += 1
            for content_type, champion_id in self._champions.items():
                by_content_type.setdefault(content_type, ContentTypeStats()).champion = champion_id

            return RegistryStats(
                total_variants=len(self._variants),
                by_status=by_status,
                by_content_type=by_content_type,
                champions=dict(self._champions),
                total_impressions=sum(v.performance.impressions for v in self._variants.values()),
                selection_history_size=len(self._history),
            )

    def clear(self) -> None:
        """Drop every variant and the selection history."""
        with self._lock:
            self._variants.clear()
            self._by_content_type.clear()
            self._champions.clear()
            self._history.clear()

    # =========================================================================
    # Snapshots
    # =========================================================================

    def to_snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(variants=[v.model_copy(deep=True) for v in self._variants.values()])

    def load_snapshot(self, snapshot: RegistrySnapshot) -> int:
        """
        Replace all state with ``snapshot``.

        Indexes are rebuilt from the variants themselves. If a content type
        carries more than one champion, the most recently updated one wins
        and the rest are retired.
        """
        variants = [v.model_copy(deep=True) for v in snapshot.variants]

        champions: dict[str, Variant] = {}
        for variant in variants:
            if variant.status != VariantStatus.CHAMPION:
                continue
            current = champions.get(variant.content_type)
            if current is None or variant.metadata.updated_at > current.metadata.updated_at:
                if current is not None:
                    current.status = VariantStatus.RETIRED
                champions[variant.content_type] = variant
            else:
                variant.status = VariantStatus.RETIRED
            if current is not None:
                logger.warning(f"Snapshot had multiple champions for {variant.content_type}; retired extras")

        with self._lock:
            self.clear()
            for variant in variants:
                if variant.id in self._variants:
                    logger.warning(f"Duplicate variant id {variant.id} in snapshot; keeping the first")
                    continue
                self._index(variant)
        return len(self._variants)

    async def save(self) -> RegistrySnapshot:
        """
        Persist a snapshot through the store.

        Raises:
            PersistenceError: every attempt failed or timed out
        """
        snapshot = self.to_snapshot()
        document = snapshot.model_dump_json(indent=2)
        await retry_with_backoff(
            lambda: self.store.write(document),
            operation="save variant snapshot",
            max_retries=self.config.persist_max_retries,
            timeout=self.config.persist_timeout,
            base_delay=self.config.retry_base_delay,
            sleep_func=self._sleep_func,
        )
        logger.debug(f"Saved registry snapshot with {len(snapshot.variants)} variants")
        return snapshot

    async def load(self) -> int:
        """
        Restore from the store. Returns the number of variants loaded;
        0 with state untouched when the store is empty.

        Raises:
            PersistenceError: read failed after retries, or the document is corrupt
        """
        document = await retry_with_backoff(
            self.store.read,
            operation="load variant snapshot",
            max_retries=self.config.persist_max_retries,
            timeout=self.config.persist_timeout,
            base_delay=self.config.retry_base_delay,
            sleep_func=self._sleep_func,
        )
        if document is None:
            logger.info("No registry snapshot found")
            return 0

        try:
            snapshot = RegistrySnapshot.model_validate_json(document)
        except PydanticValidationError as e:
            raise PersistenceError("load variant snapshot", 1, e) from e

        count = self.load_snapshot(snapshot)
        logger.info(f"Loaded {count} variants from snapshot saved at {snapshot.saved_at.isoformat()}")
        return count

    # =========================================================================
    # Internals
    # =========================================================================

    def _index(self, variant: Variant) -> None:
        self._variants[variant.id] = variant
        self._by_content_type.setdefault(variant.content_type, []).append(variant.id)
        if variant.status == VariantStatus.CHAMPION:
            self._champions[variant.content_type] = variant.id

    def _members(self, content_type: str) -> list[Variant]:
        return [self._variants[vid] for vid in self._by_content_type.get(content_type, [])]

    def _require(self, variant_id: str) -> Variant:
        variant = self._variants.get(variant_id)
        if variant is None:
            raise NotFoundError("variant", variant_id)
        return variant


def _coerce_variant(variant: Variant | dict[str, Any]) -> Variant:
    if isinstance(variant, Variant):
        return variant.model_copy(deep=True)
    try:
        return Variant.model_validate(variant)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

