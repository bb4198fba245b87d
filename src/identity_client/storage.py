"""
Key-based durable storage used by the endpoint registry and credential store.

Each key maps to one JSON document.  ``JsonFileStorage`` keeps one file per
key under a state directory and replaces it atomically on every write, so an
interrupted write leaves the previous record intact.  ``MemoryStorage`` has
the same interface and keeps nothing across processes.

Adapters raise :class:`StorageError`; deciding whether a failure matters is
left to the caller.
"""

from __future__ import annotations

import copy
import json
import os
import re
from pathlib import Path

from .config import STATE_DIR
from .errors import StorageError

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class MemoryStorage:
    """In-process storage; records are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}

    def load(self, key: str) -> dict | None:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    def save(self, key: str, record: dict) -> None:
        self._records[key] = copy.deepcopy(record)

    def delete(self, key: str) -> None:
        self._records.pop(key, None)


class JsonFileStorage:
    """
    One JSON file per key under ``directory``.

    Args:
        directory: Directory holding the ``<key>.json`` files.  Created on
            first write.
    """

    def __init__(self, directory: Path = STATE_DIR) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        """
        Return the file backing ``key``.

        Raises:
            StorageError: If ``key`` contains characters outside
                ``[A-Za-z0-9._-]``.
        """
        if not _SAFE_KEY_RE.match(key):
            raise StorageError(f"Invalid storage key: '{key}'", key=key)
        return self.directory / f"{key}.json"

    def load(self, key: str) -> dict | None:
        """
        Read the record stored under ``key``.

        Returns:
            The decoded record, or ``None`` when nothing has been stored yet.

        Raises:
            StorageError: The file exists but cannot be read or is not a
                JSON object.
        """
        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            with path.open("r", encoding="utf-8") as fh:
                record = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Cannot read record: {exc}", key=key) from exc

        if not isinstance(record, dict):
            raise StorageError(
                f"Stored record is not a JSON object (got {type(record).__name__})",
                key=key,
                error_code="STORAGE_002",
            )
        return record

    def save(self, key: str, record: dict) -> None:
        """
        Write ``record`` under ``key``, replacing any previous record.

        Raises:
            StorageError: The directory or file cannot be written, or the
                record is not JSON-serialisable.
        """
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(record, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write record: {exc}", key=key) from exc

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot delete record: {exc}", key=key) from exc
