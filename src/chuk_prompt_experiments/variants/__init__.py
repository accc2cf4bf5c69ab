# chuk_prompt_experiments/variants/__init__.py
"""
Prompt variants: registry, lifecycle and snapshot persistence.

Usage:
    from chuk_prompt_experiments.variants import VariantRegistry, seed_default_variants

    registry = VariantRegistry()
    seed_default_variants(registry)
    variant = registry.select("Roadmap")
"""

from .definitions import (
    DEFAULT_VARIANTS,
    TASK_TYPE_CONTENT_TYPES,
    content_type_for_task,
    get_default_variants,
    seed_default_variants,
)
from .models import (
    ALLOWED_TRANSITIONS,
    SELECTABLE_STATUSES,
    ContentType,
    ContentTypeStats,
    PerformanceUpdate,
    RegistrySnapshot,
    RegistryStats,
    SelectionRecord,
    Variant,
    VariantMetadata,
    VariantPerformance,
    VariantStatus,
)
from .persistence import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    SnapshotStore,
    create_snapshot_store,
)
from .registry import RegistryConfig, TierWeights, VariantRegistry

__all__ = [
    # Models
    "ContentType",
    "Variant",
    "VariantMetadata",
    "VariantPerformance",
    "VariantStatus",
    "PerformanceUpdate",
    "SelectionRecord",
    "RegistryStats",
    "ContentTypeStats",
    "RegistrySnapshot",
    "ALLOWED_TRANSITIONS",
    "SELECTABLE_STATUSES",
    # Registry
    "VariantRegistry",
    "RegistryConfig",
    "TierWeights",
    # Persistence
    "SnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "create_snapshot_store",
    # Catalogue
    "DEFAULT_VARIANTS",
    "TASK_TYPE_CONTENT_TYPES",
    "content_type_for_task",
    "get_default_variants",
    "seed_default_variants",
]
