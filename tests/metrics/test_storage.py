# tests/metrics/test_storage.py
"""
Tests for metrics storage backends.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest

from chuk_prompt_experiments.metrics import (
    FeedbackUpdate,
    FileMetricsStorage,
    GenerationMetric,
    InMemoryMetricsStorage,
    MetricsStorage,
    PromptVersion,
    create_storage,
    metrics_filename,
)


def _metric(metric_id: str, variant_id: str = "v1", content_type: str = "Roadmap", age_minutes: int = 0):
    return GenerationMetric(
        id=metric_id,
        timestamp=datetime.now(UTC) - timedelta(minutes=age_minutes),
        prompt_version=PromptVersion(content_type=content_type, variant_id=variant_id),
    )


class TestInMemoryStorage:
    @pytest.mark.asyncio
    async def test_insert_and_query(self):
        storage = InMemoryMetricsStorage()
        await storage.batch_insert([_metric("a"), _metric("b", variant_id="v2"), _metric("c", content_type="Slides")])

        assert {m.id for m in await storage.query_by_variant("v1")} == {"a", "c"}
        assert {m.id for m in await storage.query_by_content_type("Roadmap")} == {"a", "b"}
        assert await storage.query_by_variant("missing") == []

    @pytest.mark.asyncio
    async def test_insert_is_idempotent(self):
        storage = InMemoryMetricsStorage()
        batch = [_metric("a"), _metric("b")]
        await storage.batch_insert(batch)
        await storage.batch_insert(batch)

        assert len(await storage.query_by_variant("v1")) == 2
        assert (await storage.get_stats())["total_records"] == 2
        assert storage.insert_calls == 2

    @pytest.mark.asyncio
    async def test_newest_first_with_window_and_limit(self):
        storage = InMemoryMetricsStorage()
        await storage.batch_insert([_metric("old", age_minutes=60), _metric("mid", age_minutes=30), _metric("new")])

        assert [m.id for m in await storage.query_by_variant("v1")] == ["new", "mid", "old"]
        assert [m.id for m in await storage.query_by_variant("v1", limit=2)] == ["new", "mid"]

        since = datetime.now(UTC) - timedelta(minutes=45)
        assert [m.id for m in await storage.query_by_variant("v1", start=since)] == ["new", "mid"]
        until = datetime.now(UTC) - timedelta(minutes=45)
        assert [m.id for m in await storage.query_by_variant("v1", end=until)] == ["old"]

    @pytest.mark.asyncio
    async def test_update_feedback_merges(self):
        storage = InMemoryMetricsStorage()
        await storage.batch_insert([_metric("a")])

        await storage.update_feedback("a", FeedbackUpdate(rating=4))
        updated = await storage.update_feedback("a", FeedbackUpdate(was_exported=True))

        assert updated.feedback.rating == 4
        assert updated.feedback.was_exported is True
        assert updated.feedback_updated_at is not None
        assert await storage.update_feedback("missing", FeedbackUpdate(rating=1)) is None

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        storage = InMemoryMetricsStorage()
        await storage.batch_insert([_metric("a")])
        copy = await storage.get_by_id("a")
        copy.feedback.rating = 1
        assert (await storage.get_by_id("a")).feedback.rating is None

    @pytest.mark.asyncio
    async def test_clear(self):
        storage = InMemoryMetricsStorage()
        await storage.batch_insert([_metric("a")])
        await storage.clear()
        assert await storage.get_by_id("a") is None


class TestFileStorage:
    @pytest.mark.asyncio
    async def test_one_file_per_content_type(self, tmp_path):
        storage = FileMetricsStorage(tmp_path)
        await storage.batch_insert([_metric("a"), _metric("b", content_type="ResearchAnalysis")])

        expected = sorted([metrics_filename("ResearchAnalysis"), metrics_filename("Roadmap")])
        assert sorted(p.name for p in tmp_path.iterdir()) == expected
        document = json.loads((tmp_path / metrics_filename("Roadmap")).read_text())
        assert document["content_type"] == "Roadmap"
        assert [r["id"] for r in document["records"]] == ["a"]

    @pytest.mark.asyncio
    async def test_reload_from_disk(self, tmp_path):
        writer = FileMetricsStorage(tmp_path)
        await writer.batch_insert([_metric("a"), _metric("b", variant_id="v2")])
        await writer.update_feedback("a", FeedbackUpdate(rating=5))

        reader = FileMetricsStorage(tmp_path)
        assert {m.id for m in await reader.query_by_content_type("Roadmap")} == {"a", "b"}
        assert (await reader.get_by_id("a")).feedback.rating == 5
        stats = await reader.get_stats()
        assert stats["backend"] == "file"
        assert stats["total_records"] == 2

    @pytest.mark.asyncio
    async def test_unsafe_content_type_names(self, tmp_path):
        storage = FileMetricsStorage(tmp_path)
        await storage.batch_insert([_metric("a", content_type="../Weird Type")])
        assert [p.name for p in tmp_path.iterdir()] == [metrics_filename("../Weird Type")]
        assert metrics_filename("../Weird Type").startswith("_weird_type-")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first,second", [("Roadmap", "roadmap"), ("Research Analysis", "Research_Analysis")])
    async def test_similar_content_types_survive_reload(self, tmp_path, first, second):
        writer = FileMetricsStorage(tmp_path)
        await writer.batch_insert([_metric("a", content_type=first)])
        await writer.batch_insert([_metric("b", content_type=second)])

        assert metrics_filename(first) != metrics_filename(second)
        assert len(list(tmp_path.iterdir())) == 2

        reader = FileMetricsStorage(tmp_path)
        assert (await reader.get_by_id("a")).content_type == first
        assert (await reader.get_by_id("b")).content_type == second
        assert [m.id for m in await reader.query_by_content_type(first)] == ["a"]

    @pytest.mark.asyncio
    async def test_clear_removes_files(self, tmp_path):
        storage = FileMetricsStorage(tmp_path)
        await storage.batch_insert([_metric("a")])
        await storage.clear()
        assert list(tmp_path.iterdir()) == []
        assert await storage.get_by_id("a") is None


class TestFactory:
    def test_create_storage(self, tmp_path):
        assert isinstance(create_storage("memory"), InMemoryMetricsStorage)
        file_storage = create_storage("file", tmp_path)
        assert isinstance(file_storage, FileMetricsStorage)
        assert file_storage.data_dir == tmp_path
        assert isinstance(create_storage("redis"), InMemoryMetricsStorage)

    def test_protocol(self, tmp_path):
        assert isinstance(InMemoryMetricsStorage(), MetricsStorage)
        assert isinstance(FileMetricsStorage(tmp_path), MetricsStorage)
