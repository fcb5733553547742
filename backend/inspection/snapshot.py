"""Durable local storage for the wizard draft."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "accident-inspection-storage"


class SnapshotStorage(Protocol):
    def read(self) -> str | None: ...

    def write(self, data: str) -> None: ...

    def clear(self) -> None: ...


class JsonFileSnapshotStorage:
    """One JSON file per draft, replaced atomically on every write."""

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)

    def read(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def write(self, data: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{SNAPSHOT_KEY}-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class InMemorySnapshotStorage:
    def __init__(self, data: str | None = None):
        self.data = data
        self.writes = 0

    def read(self) -> str | None:
        return self.data

    def write(self, data: str) -> None:
        self.data = data
        self.writes += 1

    def clear(self) -> None:
        self.data = None
