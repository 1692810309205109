"""
CacheStore - content-addressed storage of deterministic node outputs.

Keys are SHA256 hashes of a node's fully resolved spec; values are the
cacheable part of a NodeOutput (result, artifacts, logs). Entries are
write-once and never invalidated.

Storage backends:
- In-memory (for testing)
- File-based, one JSON file per key
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional


logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Abstract base class for the result cache."""

    @abstractmethod
    def get(self, key: str) -> Optional[dict[str, Any]]:
        """
        Get a cached payload.

        Args:
            key: Cache key

        Returns:
            The cached payload, or None on a miss
        """
        pass

    @abstractmethod
    def put(self, key: str, payload: dict[str, Any]) -> None:
        """
        Store a payload under a key.

        Existing entries are never overwritten.
        """
        pass

    def has(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryCacheStore(CacheStore):
    """
    In-memory implementation of CacheStore for testing.

    Payloads are stored as JSON text so that a hit returns an independent
    copy, exactly as the file store does.
    """

    def __init__(self):
        self._entries: dict[str, str] = {}

    def get(self, key: str) -> Optional[dict[str, Any]]:
        raw = self._entries.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, payload: dict[str, Any]) -> None:
        self._entries.setdefault(key, json.dumps(payload))

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FileCacheStore(CacheStore):
    """
    File-based implementation of CacheStore.

    Stores each entry as cache_dir/{key}.json. Writes go through a temporary
    file and an atomic rename, so readers never see a partial entry.
    """

    def __init__(self, cache_dir: Path | str):
        self._cache_dir = Path(cache_dir)
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _path(self, key: str) -> Path:
        return self._cache_dir / f"{key}.json"

    def get(self, key: str) -> Optional[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def put(self, key: str, payload: dict[str, Any]) -> None:
        path = self._path(key)
        if path.exists():
            logger.debug("Cache entry %s already present, not overwriting", key)
            return

        fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            os.unlink(tmp_name)
            raise
