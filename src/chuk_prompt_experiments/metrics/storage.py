# chuk_prompt_experiments/metrics/storage.py
"""
Durable storage backends for generation metrics.

Backends:
- InMemoryMetricsStorage: dict + per-variant / per-content-type indexes
- FileMetricsStorage: one JSON document per content type, written through

Inserts are keyed by generation id, so re-inserting a batch after a
partially failed flush replaces rather than duplicates records.
Queries return newest first.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from chuk_prompt_experiments.config import METRICS_DATA_DIR, METRICS_STORAGE

from .models import FeedbackUpdate, GenerationMetric

logger = logging.getLogger(__name__)


@runtime_checkable
class MetricsStorage(Protocol):
    """Where flushed generation metrics live."""

    async def batch_insert(self, metrics: list[GenerationMetric]) -> int: ...

    async def update_feedback(self, generation_id: str, feedback: FeedbackUpdate) -> GenerationMetric | None: ...

    async def get_by_id(self, generation_id: str) -> GenerationMetric | None: ...

    async def query_by_variant(
        self,
        variant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]: ...

    async def query_by_content_type(
        self,
        content_type: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]: ...

    async def get_stats(self) -> dict[str, Any]: ...

    async def clear(self) -> None: ...

    async def shutdown(self) -> None: ...


def _window(
    records: list[GenerationMetric],
    start: datetime | None,
    end: datetime | None,
    limit: int | None,
) -> list[GenerationMetric]:
    selected = [
        r for r in records if (start is None or r.timestamp >= start) and (end is None or r.timestamp <= end)
    ]
    selected.sort(key=lambda r: r.timestamp, reverse=True)
    if limit is not None:
        selected = selected[: max(0, limit)]
    return [r.model_copy(deep=True) for r in selected]


# =============================================================================
# In-memory
# =============================================================================


class InMemoryMetricsStorage:
    """Process-local storage. Useful for tests and single-process demos."""

    def __init__(self) -> None:
        self._records: dict[str, GenerationMetric] = {}
        self._by_variant: dict[str, set[str]] = {}
        self._by_content_type: dict[str, set[str]] = {}
        self.insert_calls = 0

    async def batch_insert(self, metrics: list[GenerationMetric]) -> int:
        self.insert_calls += 1
        for metric in metrics:
            self._put(metric.model_copy(deep=True))
        return len(metrics)

    async def update_feedback(self, generation_id: str, feedback: FeedbackUpdate) -> GenerationMetric | None:
        record = self._records.get(generation_id)
        if record is None:
            return None
        record.apply_feedback(feedback)
        return record.model_copy(deep=True)

    async def get_by_id(self, generation_id: str) -> GenerationMetric | None:
        record = self._records.get(generation_id)
        return record.model_copy(deep=True) if record else None

    async def query_by_variant(
        self,
        variant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]:
        ids = self._by_variant.get(variant_id, set())
        return _window([self._records[i] for i in ids], start, end, limit)

    async def query_by_content_type(
        self,
        content_type: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]:
        ids = self._by_content_type.get(content_type, set())
        return _window([self._records[i] for i in ids], start, end, limit)

    async def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "total_records": len(self._records),
            "variants": len(self._by_variant),
            "content_types": len(self._by_content_type),
        }

    async def clear(self) -> None:
        self._records.clear()
        self._by_variant.clear()
        self._by_content_type.clear()

    async def shutdown(self) -> None:
        return None

    def _put(self, metric: GenerationMetric) -> None:
        previous = self._records.get(metric.id)
        if previous is not None:
            self._by_variant.get(previous.variant_id, set()).discard(metric.id)
            self._by_content_type.get(previous.content_type, set()).discard(metric.id)
        self._records[metric.id] = metric
        self._by_variant.setdefault(metric.variant_id, set()).add(metric.id)
        self._by_content_type.setdefault(metric.content_type, set()).add(metric.id)


# =============================================================================
# File
# =============================================================================


class _MetricsDocument(BaseModel):
    version: str = "1.0.0"
    content_type: str
    records: list[GenerationMetric] = Field(default_factory=list)


_UNSAFE_FILENAME_RE = re.compile(r"[^a-z0-9_-]+")


def metrics_filename(content_type: str) -> str:
    """Readable slug plus a digest of the exact name, so distinct content types never share a file."""
    name = _UNSAFE_FILENAME_RE.sub("_", content_type.lower()) or "unknown"
    digest = hashlib.sha256(content_type.encode("utf-8")).hexdigest()[:8]
    return f"{name}-{digest}.json"


class FileMetricsStorage(InMemoryMetricsStorage):
    """
    JSON files under ``data_dir``, one per content type.

    All files are loaded on first use; every mutation rewrites the
    affected content type's file via a temp file and ``os.replace``.
    """

    def __init__(self, data_dir: str | Path | None = None) -> None:
        super().__init__()
        self.data_dir = Path(data_dir or METRICS_DATA_DIR)
        self._loaded = False
        self._lock = asyncio.Lock()

    async def batch_insert(self, metrics: list[GenerationMetric]) -> int:
        async with self._lock:
            await self._ensure_loaded()
            count = await super().batch_insert(metrics)
            for content_type in {m.content_type for m in metrics}:
                await self._write(content_type)
            return count

    async def update_feedback(self, generation_id: str, feedback: FeedbackUpdate) -> GenerationMetric | None:
        async with self._lock:
            await self._ensure_loaded()
            updated = await super().update_feedback(generation_id, feedback)
            if updated is not None:
                await self._write(updated.content_type)
            return updated

    async def get_by_id(self, generation_id: str) -> GenerationMetric | None:
        await self._ensure_loaded()
        return await super().get_by_id(generation_id)

    async def query_by_variant(
        self,
        variant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]:
        await self._ensure_loaded()
        return await super().query_by_variant(variant_id, start, end, limit)

    async def query_by_content_type(
        self,
        content_type: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GenerationMetric]:
        await self._ensure_loaded()
        return await super().query_by_content_type(content_type, start, end, limit)

    async def get_stats(self) -> dict[str, Any]:
        await self._ensure_loaded()
        stats = await super().get_stats()
        stats.update(backend="file", data_dir=str(self.data_dir))
        return stats

    async def clear(self) -> None:
        async with self._lock:
            content_types = list(self._by_content_type)
            await super().clear()
            for content_type in content_types:
                await asyncio.to_thread(self._path(content_type).unlink, missing_ok=True)
            self._loaded = True

    def _path(self, content_type: str) -> Path:
        return self.data_dir / metrics_filename(content_type)

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        documents = await asyncio.to_thread(self._read_all)
        for document in documents:
            for record in document.records:
                self._put(record)
        self._loaded = True
        logger.debug(f"Loaded {len(self._records)} metrics from {self.data_dir}")

    def _read_all(self) -> list[_MetricsDocument]:
        if not self.data_dir.exists():
            return []
        documents = []
        for path in sorted(self.data_dir.glob("*.json")):
            documents.append(_MetricsDocument.model_validate_json(path.read_text(encoding="utf-8")))
        return documents

    async def _write(self, content_type: str) -> None:
        ids = self._by_content_type.get(content_type, set())
        records = sorted((self._records[i] for i in ids), key=lambda r: r.timestamp)
        document = _MetricsDocument(content_type=content_type, records=records).model_dump_json()
        await asyncio.to_thread(self._write_sync, self._path(content_type), document)

    def _write_sync(self, path: Path, document: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(document)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def create_storage(kind: str | None = None, data_dir: str | Path | None = None) -> MetricsStorage:
    """Storage backend by name ("memory" or "file"), defaulting to configuration."""
    kind = (kind or METRICS_STORAGE).lower()
    if kind == "file":
        return FileMetricsStorage(data_dir)
    if kind != "memory":
        logger.warning(f"Unknown metrics storage '{kind}', using memory")
    return InMemoryMetricsStorage()
