"""
Checkpoint backends - durable RunState snapshots keyed by thread id.

The executor saves a snapshot after initialization and after every tick;
resume loads the latest snapshot for the run's thread id.

Storage backends:
- In-memory (for testing)
- SQLite, one database per run directory (checkpoints.db)
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from dagrun.schemas import RunState
from dagrun.utils import utcnow


CHECKPOINT_DB = "checkpoints.db"


class CheckpointStore(ABC):
    """Abstract base class for checkpoint storage."""

    @abstractmethod
    def save(self, thread_id: str, state: RunState) -> None:
        """Save a snapshot for a thread."""
        pass

    @abstractmethod
    def load(self, thread_id: str) -> Optional[RunState]:
        """
        Load the latest snapshot for a thread.

        Returns:
            The RunState, or None if the thread has no snapshot
        """
        pass


class InMemoryCheckpointStore(CheckpointStore):
    """
    In-memory implementation of CheckpointStore for testing.

    Snapshots are serialized on save so later state changes never leak in.
    """

    def __init__(self):
        self._snapshots: dict[str, list[dict]] = {}

    def save(self, thread_id: str, state: RunState) -> None:
        self._snapshots.setdefault(thread_id, []).append(
            json.loads(json.dumps(state.to_dict()))
        )

    def load(self, thread_id: str) -> Optional[RunState]:
        snapshots = self._snapshots.get(thread_id)
        if not snapshots:
            return None
        return RunState.from_dict(snapshots[-1])

    def count(self, thread_id: str) -> int:
        return len(self._snapshots.get(thread_id, []))


class SqliteCheckpointStore(CheckpointStore):
    """
    SQLite implementation of CheckpointStore.

    Snapshots are appended to a `checkpoints` table; load() returns the row
    with the highest sequence number for the thread.
    """

    def __init__(self, db_path: Path | str):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS checkpoints ("
                " seq INTEGER PRIMARY KEY AUTOINCREMENT,"
                " thread_id TEXT NOT NULL,"
                " created_at TEXT NOT NULL,"
                " state_json TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_checkpoints_thread"
                " ON checkpoints (thread_id, seq)"
            )
            conn.commit()
        finally:
            conn.close()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def save(self, thread_id: str, state: RunState) -> None:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute(
                "INSERT INTO checkpoints (thread_id, created_at, state_json) VALUES (?, ?, ?)",
                (thread_id, utcnow().isoformat(), json.dumps(state.to_dict())),
            )
            conn.commit()
        finally:
            conn.close()

    def load(self, thread_id: str) -> Optional[RunState]:
        conn = sqlite3.connect(self._db_path)
        try:
            row = conn.execute(
                "SELECT state_json FROM checkpoints WHERE thread_id = ?"
                " ORDER BY seq DESC LIMIT 1",
                (thread_id,),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return RunState.from_dict(json.loads(row[0]))
