# tests/conftest.py
"""
Shared pytest fixtures and configuration for chuk_prompt_experiments tests.

Randomness and sleeping are injected so selection and retry tests are
deterministic and fast.
"""

import logging
import random

import pytest

from chuk_prompt_experiments.context import (
    ContextAssembler,
    ContextPipeline,
    StrategyTable,
    TokenEstimator,
)
from chuk_prompt_experiments.metrics import (
    CollectorConfig,
    InMemoryMetricsStorage,
    MetricsCollector,
)
from chuk_prompt_experiments.variants import (
    InMemorySnapshotStore,
    RegistryConfig,
    Variant,
    VariantRegistry,
    VariantStatus,
)

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logging.getLogger("chuk_prompt_experiments").setLevel(logging.DEBUG)


async def no_sleep(delay: float) -> None:
    """Drop-in for asyncio.sleep in retry loops."""
    return None


def make_variant(
    variant_id: str,
    content_type: str = "Roadmap",
    status: VariantStatus = VariantStatus.ACTIVE,
    weight: float = 1.0,
    template: str = "",
) -> Variant:
    return Variant(
        id=variant_id,
        content_type=content_type,
        status=status,
        weight=weight,
        prompt_template=template or f"Template for {variant_id}",
    )


@pytest.fixture
def estimator():
    return TokenEstimator()


@pytest.fixture
def strategies():
    return StrategyTable()


@pytest.fixture
def assembler(estimator, strategies):
    return ContextAssembler(estimator, strategies)


@pytest.fixture
def pipeline(estimator, assembler, strategies):
    return ContextPipeline(estimator, assembler, strategies)


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def registry(snapshot_store):
    return VariantRegistry(
        config=RegistryConfig(retry_base_delay=0),
        store=snapshot_store,
        rng=random.Random(42),
        sleep_func=no_sleep,
    )


@pytest.fixture
def storage():
    return InMemoryMetricsStorage()


@pytest.fixture
def collector(storage, registry):
    return MetricsCollector(
        storage=storage,
        registry=registry,
        config=CollectorConfig(batch_size=1000, flush_interval=60, persist_max_retries=1, retry_base_delay=0),
        sleep_func=no_sleep,
    )
