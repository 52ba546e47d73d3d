"""Durable storage backends for progress entries.

``ProgressStorage`` is the seam between the store and shared storage.
``FileProgressStorage`` keeps one JSON file per progress id in a directory
visible to every process on the machine; a shared key-value store can be
plugged in for multi-node deployments.
"""

import json
import os
import re
import threading
from pathlib import Path
from typing import Protocol

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def is_valid_id(progress_id: object) -> bool:
    """True if ``progress_id`` can be used as a storage key."""
    return isinstance(progress_id, str) and bool(_ID_PATTERN.match(progress_id))


class ProgressStorage(Protocol):
    """Key-value storage for serialized progress entries."""

    def load(self, progress_id: str) -> dict | None:
        """Return the stored document, or None if absent."""
        ...

    def save(self, progress_id: str, data: dict) -> None:
        """Replace the stored document atomically."""
        ...

    def delete(self, progress_id: str) -> None:
        """Remove the stored document. Missing ids are ignored."""
        ...

    def list_ids(self) -> list[str]:
        """Ids of every stored document."""
        ...


class FileProgressStorage:
    """One ``<id>.json`` file per entry under ``directory``.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so readers never observe a half-written document.

    Args:
        directory: Directory shared by writer and reader processes.
            Created on first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, progress_id: str) -> Path:
        if not is_valid_id(progress_id):
            raise ValueError(f"Invalid progress id: {progress_id!r}")
        return self.directory / f"{progress_id}.json"

    def load(self, progress_id: str) -> dict | None:
        if not is_valid_id(progress_id):
            return None
        path = self._path(progress_id)
        try:
            with open(path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def save(self, progress_id: str, data: dict) -> None:
        path = self._path(progress_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, default=str)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def delete(self, progress_id: str) -> None:
        if not is_valid_id(progress_id):
            return
        self._path(progress_id).unlink(missing_ok=True)

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            p.stem for p in self.directory.glob("*.json") if is_valid_id(p.stem)
        )
