"""
RunStore - Persist run metadata and artifacts.

The RunStore manages:
- RunMetadata (created by every fresh start, reopened on every resume)
- The thread id, generated exactly once per run and reused by resumes
- Per-node status transitions with timestamps and durations
- Node outputs and error payloads
- Artifacts written by nodes and agents

Storage backends:
- In-memory (for testing)
- File-based: a run directory holding run.json and artifacts/
"""

import json
import logging
import os
import random
import tempfile
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from dagrun.errors import ResumeError
from dagrun.schemas import NodeRecord, NodeStatus, RunMetadata, RunStatus
from dagrun.utils import utcnow


logger = logging.getLogger(__name__)

RUN_FILE = "run.json"
ARTIFACTS_DIR = "artifacts"


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    alphabet = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(alphabet[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(alphabet) for _ in range(16))

    return timestamp_part + random_part


class RunStore(ABC):
    """
    Abstract base class for run metadata storage.

    Status bookkeeping is shared; subclasses decide where metadata and
    artifacts live by implementing _save() and _write_artifact().
    """

    def __init__(self) -> None:
        self._metadata: Optional[RunMetadata] = None

    @property
    def metadata(self) -> RunMetadata:
        if self._metadata is None:
            raise RuntimeError("Run has not been started")
        return self._metadata

    @property
    def thread_id(self) -> str:
        return self.metadata.thread_id

    @property
    def has_run(self) -> bool:
        """Whether metadata from a previous attempt exists."""
        return self._metadata is not None

    def start(
        self,
        workflow_name: str,
        node_ids: list[str],
        workflow_hash: Optional[str] = None,
        checkpoint_path: Optional[str] = None,
        resume: bool = False,
    ) -> RunMetadata:
        """
        Start an attempt.

        A fresh start always creates new metadata with a new thread id,
        replacing whatever the store held. A resume reopens existing
        metadata for another attempt, keeping its thread id, start time and
        node records.

        Args:
            workflow_name: Name of the workflow
            node_ids: Ids of every node in the workflow
            workflow_hash: Hash of the workflow definition
            checkpoint_path: Location of the checkpoint database
            resume: Continue the existing run instead of replacing it

        Returns:
            The active RunMetadata
        """
        if self._metadata is None or not resume:
            self._metadata = RunMetadata(
                workflow_name=workflow_name,
                thread_id=generate_ulid(),
                start_time=utcnow(),
                checkpoint_path=checkpoint_path,
            )
        else:
            self._metadata.attempts += 1
            self._metadata.status = RunStatus.RUNNING
            self._metadata.end_time = None
            self._metadata.error = None
            if checkpoint_path is not None:
                self._metadata.checkpoint_path = checkpoint_path

        self._metadata.workflow_hash = workflow_hash
        for nid in node_ids:
            self._metadata.nodes.setdefault(nid, NodeRecord())

        self._save()
        return self._metadata

    def set_node_status(self, node_id: str, status: NodeStatus, at: Optional[datetime] = None) -> None:
        """
        Record a node status transition.

        RUNNING stamps the start time and drops any stale output or error.
        SUCCESS, CACHED and FAILED stamp the end time and duration. SKIPPED records the status only. PENDING
        (a resume reset) clears the previous attempt's timing, output and
        error.
        """
        at = at or utcnow()
        record = self.metadata.nodes.setdefault(node_id, NodeRecord())
        record.status = status

        if status == NodeStatus.PENDING:
            record.start_time = None
            record.end_time = None
            record.duration_ms = None
            record.output = None
            record.error = None
        elif status == NodeStatus.RUNNING:
            record.start_time = at
            record.end_time = None
            record.duration_ms = None
            record.output = None
            record.error = None
        elif status in (NodeStatus.SUCCESS, NodeStatus.CACHED, NodeStatus.FAILED):
            record.end_time = at
            if record.start_time is not None:
                record.duration_ms = int((at - record.start_time).total_seconds() * 1000)

        self._save()

    def set_node_output(self, node_id: str, output: dict[str, Any]) -> None:
        self.metadata.nodes.setdefault(node_id, NodeRecord()).output = output
        self._save()

    def set_node_error(self, node_id: str, error: dict[str, Any]) -> None:
        self.metadata.nodes.setdefault(node_id, NodeRecord()).error = error
        self._save()

    def complete(self, status: RunStatus, error: Optional[dict[str, Any]] = None) -> None:
        """Mark the current attempt finished."""
        self.metadata.status = status
        self.metadata.end_time = utcnow()
        self.metadata.error = error
        self._save()

    def write_artifact(self, rel_path: str, content: Union[str, bytes]) -> str:
        """
        Write an artifact for the run.

        Args:
            rel_path: Path relative to the run's artifact area
            content: Text or bytes to write

        Returns:
            Reference to the stored artifact

        Raises:
            ValueError: If rel_path is absolute or escapes the artifact area
        """
        parts = Path(rel_path).parts
        if not rel_path or Path(rel_path).is_absolute() or ".." in parts:
            raise ValueError(f"Artifact path must be relative to the run: {rel_path}")
        return self._write_artifact(rel_path, content)

    @abstractmethod
    def artifact_exists(self, rel_path: str) -> bool:
        pass

    @abstractmethod
    def _write_artifact(self, rel_path: str, content: Union[str, bytes]) -> str:
        pass

    @abstractmethod
    def _save(self) -> None:
        """Persist the current metadata."""
        pass


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected. Snapshots of
    every save are kept in `history` so tests can inspect transitions.
    """

    def __init__(self):
        super().__init__()
        self.artifacts: dict[str, Union[str, bytes]] = {}
        self.history: list[dict[str, Any]] = []

    def artifact_exists(self, rel_path: str) -> bool:
        return rel_path in self.artifacts

    def _write_artifact(self, rel_path: str, content: Union[str, bytes]) -> str:
        self.artifacts[rel_path] = content
        return f"mem://artifacts/{rel_path}"

    def _save(self) -> None:
        self.history.append(self.metadata.to_dict())


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores a run as a directory:
        run_dir/
            run.json
            artifacts/
                ...

    Opening a directory that already holds run.json loads it, so that
    start(resume=True) continues that run under the same thread id. A
    fresh start() overwrites it.
    """

    def __init__(self, run_dir: Path | str):
        super().__init__()
        self._run_dir = Path(run_dir)
        self._run_dir.mkdir(parents=True, exist_ok=True)
        self._metadata = load_metadata(self._run_dir)

    @classmethod
    def open_existing(cls, run_dir: Path | str) -> "FileRunStore":
        """
        Open a run directory for resume.

        Raises:
            ResumeError: If the directory holds no run.json
        """
        run_dir = Path(run_dir)
        if not (run_dir / RUN_FILE).exists():
            raise ResumeError(f"No run found to resume in {run_dir}")
        return cls(run_dir)

    @property
    def run_dir(self) -> Path:
        return self._run_dir

    @property
    def artifacts_dir(self) -> Path:
        return self._run_dir / ARTIFACTS_DIR

    def artifact_exists(self, rel_path: str) -> bool:
        return (self.artifacts_dir / rel_path).exists()

    def _write_artifact(self, rel_path: str, content: Union[str, bytes]) -> str:
        path = self.artifacts_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
        return str(path)

    def _save(self) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._run_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.metadata.to_dict(), f, indent=2)
            os.replace(tmp_name, self._run_dir / RUN_FILE)
        except BaseException:
            os.unlink(tmp_name)
            raise


def load_metadata(run_dir: Path | str) -> Optional[RunMetadata]:
    """
    Load run metadata from a run directory.

    Returns:
        The RunMetadata, or None if the directory holds no run.json
    """
    run_path = Path(run_dir) / RUN_FILE
    if not run_path.exists():
        return None
    with open(run_path) as f:
        data = json.load(f)
    return RunMetadata.from_dict(data)
