# chuk_prompt_experiments/variants/persistence.py
"""
Snapshot stores for the variant registry.

A store moves a single JSON document; the registry owns serialization
and index reconstruction. Stores are async so file or network backends
can be swapped in without touching the registry.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from chuk_prompt_experiments.config import VARIANT_SNAPSHOT_PATH

logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotStore(Protocol):
    """Where registry snapshots live."""

    async def write(self, document: str) -> None: ...

    async def read(self) -> str | None: ...


class InMemorySnapshotStore:
    """Keeps the last written document in memory. Useful for tests."""

    def __init__(self) -> None:
        self.document: str | None = None
        self.writes = 0

    async def write(self, document: str) -> None:
        self.document = document
        self.writes += 1

    async def read(self) -> str | None:
        return self.document


class FileSnapshotStore:
    """
    JSON file on local disk.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so readers never see a partial document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def write(self, document: str) -> None:
        await asyncio.to_thread(self._write_sync, document)
        logger.debug(f"Wrote registry snapshot to {self.path}")

    async def read(self) -> str | None:
        return await asyncio.to_thread(self._read_sync)

    def _write_sync(self, document: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(document)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_sync(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")


def create_snapshot_store(path: str | Path | None = None) -> FileSnapshotStore:
    """File store at ``path`` or the configured snapshot path."""
    return FileSnapshotStore(path or VARIANT_SNAPSHOT_PATH)
