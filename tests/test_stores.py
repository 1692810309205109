"""Tests for storage backends.

Tests cover:
- CacheStore: in-memory and file-based, write-once semantics
- RunStore: thread id, attempts, node timing, artifacts, reload from disk
- CheckpointStore: latest snapshot per thread, in-memory and SQLite
"""

import json
from datetime import timedelta

import pytest

from dagrun.cache_store import FileCacheStore, InMemoryCacheStore
from dagrun.checkpoint import InMemoryCheckpointStore, SqliteCheckpointStore
from dagrun.errors import ResumeError
from dagrun.run_store import (
    RUN_FILE,
    FileRunStore,
    InMemoryRunStore,
    generate_ulid,
    load_metadata,
)
from dagrun.schemas import NodeOutput, NodeStatus, RunState, RunStatus
from dagrun.utils import utcnow


# =============================================================================
# CacheStore
# =============================================================================


@pytest.fixture(params=["memory", "file"])
def cache_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCacheStore()
    return FileCacheStore(tmp_path / "cache")


class TestCacheStore:
    """Tests shared by every CacheStore backend."""

    def test_miss_returns_none(self, cache_store):
        """Unknown keys are misses."""
        assert cache_store.get("abc") is None
        assert not cache_store.has("abc")

    def test_put_then_get(self, cache_store):
        """Stored payloads come back equal."""
        payload = {"result": {"stdout": "hi"}, "artifacts": [], "logs": ["x"]}
        cache_store.put("k1", payload)
        assert cache_store.get("k1") == payload
        assert cache_store.has("k1")

    def test_entries_are_write_once(self, cache_store):
        """A second put for the same key is ignored."""
        cache_store.put("k1", {"result": 1})
        cache_store.put("k1", {"result": 2})
        assert cache_store.get("k1") == {"result": 1}

    def test_hits_are_independent_copies(self, cache_store):
        """Mutating a hit does not change the stored entry."""
        cache_store.put("k1", {"result": [1]})
        cache_store.get("k1")["result"].append(2)
        assert cache_store.get("k1") == {"result": [1]}


class TestFileCacheStore:
    """Tests specific to FileCacheStore."""

    def test_one_file_per_key(self, tmp_path):
        """Entries are stored as {key}.json."""
        store = FileCacheStore(tmp_path / "cache")
        store.put("deadbeef", {"result": 1})
        assert json.loads((tmp_path / "cache" / "deadbeef.json").read_text()) == {"result": 1}
        assert list((tmp_path / "cache").glob("*.tmp")) == []

    def test_survives_reopen(self, tmp_path):
        """A new instance sees entries written by an earlier one."""
        FileCacheStore(tmp_path / "cache").put("k", {"result": "x"})
        assert FileCacheStore(tmp_path / "cache").get("k") == {"result": "x"}


# =============================================================================
# RunStore
# =============================================================================


class TestGenerateUlid:
    """Tests for generate_ulid."""

    def test_format(self):
        """ULIDs are 26 Crockford base32 characters."""
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert set(ulid) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")

    def test_unique(self):
        """Consecutive ULIDs differ."""
        assert len({generate_ulid() for _ in range(50)}) == 50


class TestRunStore:
    """Tests for RunStore bookkeeping (in-memory backend)."""

    def test_metadata_before_start_raises(self):
        """Metadata is unavailable until the run starts."""
        store = InMemoryRunStore()
        assert not store.has_run
        with pytest.raises(RuntimeError, match="not been started"):
            store.metadata

    def test_start_creates_run(self):
        """start() creates PENDING records and a thread id."""
        store = InMemoryRunStore()
        metadata = store.start("wf", ["a", "b"], workflow_hash="h")
        assert metadata.workflow_name == "wf"
        assert metadata.status == RunStatus.RUNNING
        assert metadata.attempts == 1
        assert len(metadata.thread_id) == 26
        assert {nid: r.status for nid, r in metadata.nodes.items()} == {
            "a": NodeStatus.PENDING, "b": NodeStatus.PENDING,
        }

    def test_restart_keeps_thread_id(self):
        """A resumed start() reopens the run under the same thread id."""
        store = InMemoryRunStore()
        first = store.start("wf", ["a"])
        thread_id, started = first.thread_id, first.start_time
        store.complete(RunStatus.FAILED, {"message": "boom"})

        second = store.start("wf", ["a", "new"], resume=True)

        assert second.thread_id == thread_id
        assert second.start_time == started
        assert second.attempts == 2
        assert second.status == RunStatus.RUNNING
        assert second.error is None
        assert "new" in second.nodes

    def test_fresh_start_replaces_previous_run(self):
        """A start() without resume begins a new run with fresh node records."""
        store = InMemoryRunStore()
        first = store.start("wf", ["a"])
        store.set_node_error("a", {"message": "boom"})
        store.set_node_status("a", NodeStatus.FAILED)
        store.complete(RunStatus.FAILED, {"message": "boom"})

        second = store.start("wf", ["a"])

        assert second.thread_id != first.thread_id
        assert second.attempts == 1
        assert second.nodes["a"].status == NodeStatus.PENDING
        assert second.nodes["a"].error is None

    def test_running_clears_stale_output_and_error(self):
        """A node starting again drops the previous output and error."""
        store = InMemoryRunStore()
        store.start("wf", ["a"])
        store.set_node_output("a", {"result": 1})
        store.set_node_error("a", {"message": "boom"})

        store.set_node_status("a", NodeStatus.RUNNING)

        record = store.metadata.nodes["a"]
        assert record.output is None
        assert record.error is None

    def test_node_timing(self):
        """RUNNING stamps start; SUCCESS stamps end and duration."""
        store = InMemoryRunStore()
        store.start("wf", ["a"])
        start = utcnow()
        store.set_node_status("a", NodeStatus.RUNNING, at=start)
        store.set_node_status("a", NodeStatus.SUCCESS, at=start + timedelta(milliseconds=250))

        record = store.metadata.nodes["a"]
        assert record.status == NodeStatus.SUCCESS
        assert record.start_time == start
        assert record.duration_ms == 250

    def test_skipped_has_no_timing(self):
        """SKIPPED nodes never ran."""
        store = InMemoryRunStore()
        store.start("wf", ["a"])
        store.set_node_status("a", NodeStatus.SKIPPED)
        record = store.metadata.nodes["a"]
        assert record.start_time is None and record.end_time is None

    def test_pending_clears_previous_attempt(self):
        """Resetting to PENDING clears timing, output and error."""
        store = InMemoryRunStore()
        store.start("wf", ["a"])
        store.set_node_status("a", NodeStatus.RUNNING)
        store.set_node_error("a", {"message": "boom"})
        store.set_node_status("a", NodeStatus.FAILED)

        store.set_node_status("a", NodeStatus.PENDING)

        record = store.metadata.nodes["a"]
        assert record.status == NodeStatus.PENDING
        assert record.error is None
        assert record.start_time is None

    def test_history_records_every_save(self):
        """The in-memory store snapshots each save."""
        store = InMemoryRunStore()
        store.start("wf", ["a"])
        store.set_node_status("a", NodeStatus.RUNNING)
        assert [h["nodes"]["a"]["status"] for h in store.history] == ["pending", "running"]

    @pytest.mark.parametrize("rel_path", ["/etc/passwd", "../escape.txt", "a/../../b", ""])
    def test_artifact_path_must_stay_inside(self, rel_path):
        """Absolute or escaping artifact paths are rejected."""
        store = InMemoryRunStore()
        with pytest.raises(ValueError, match="must be relative"):
            store.write_artifact(rel_path, "x")

    def test_write_artifact(self):
        """Artifacts are recorded and addressable."""
        store = InMemoryRunStore()
        ref = store.write_artifact("n/out.md", "hello")
        assert ref == "mem://artifacts/n/out.md"
        assert store.artifact_exists("n/out.md")


class TestFileRunStore:
    """Tests for FileRunStore."""

    def test_writes_run_json(self, tmp_path):
        """Every save lands in run.json."""
        store = FileRunStore(tmp_path / "run")
        store.start("wf", ["a"])
        store.set_node_output("a", NodeOutput(result=1).to_dict())

        data = json.loads((tmp_path / "run" / RUN_FILE).read_text())
        assert data["workflow_name"] == "wf"
        assert data["nodes"]["a"]["output"]["result"] == 1

    def test_reopen_continues_run(self, tmp_path):
        """Opening an existing directory resumes under the same thread id."""
        first = FileRunStore(tmp_path / "run")
        thread_id = first.start("wf", ["a"]).thread_id

        reopened = FileRunStore.open_existing(tmp_path / "run")
        assert reopened.has_run
        assert reopened.start("wf", ["a"], resume=True).thread_id == thread_id
        assert load_metadata(tmp_path / "run").attempts == 2

    def test_open_existing_requires_run(self, tmp_path):
        """Resuming an empty directory is an error."""
        with pytest.raises(ResumeError, match="No run found"):
            FileRunStore.open_existing(tmp_path / "empty")

    def test_write_artifact(self, tmp_path):
        """Artifacts are written under artifacts/."""
        store = FileRunStore(tmp_path / "run")
        ref = store.write_artifact("n/out.bin", b"\x00\x01")
        assert ref == str(tmp_path / "run" / "artifacts" / "n" / "out.bin")
        assert store.artifact_exists("n/out.bin")
        assert (store.artifacts_dir / "n" / "out.bin").read_bytes() == b"\x00\x01"

    def test_load_metadata_missing(self, tmp_path):
        """No run.json means no metadata."""
        assert load_metadata(tmp_path) is None


# =============================================================================
# CheckpointStore
# =============================================================================


@pytest.fixture(params=["memory", "sqlite"])
def checkpoint_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCheckpointStore()
    return SqliteCheckpointStore(tmp_path / "run" / "checkpoints.db")


class TestCheckpointStore:
    """Tests shared by every CheckpointStore backend."""

    def test_load_unknown_thread(self, checkpoint_store):
        """Threads without snapshots load as None."""
        assert checkpoint_store.load("nope") is None

    def test_latest_snapshot_wins(self, checkpoint_store):
        """load() returns the most recent snapshot."""
        state = RunState.initial(["a"], {"x": 1})
        checkpoint_store.save("t1", state)
        later = state.with_status("a", NodeStatus.RUNNING).with_status("a", NodeStatus.SUCCESS)
        later = later.with_output("a", NodeOutput(result="done"))
        checkpoint_store.save("t1", later)

        assert checkpoint_store.load("t1") == later

    def test_threads_are_isolated(self, checkpoint_store):
        """Snapshots are keyed by thread id."""
        checkpoint_store.save("t1", RunState.initial(["a"]))
        checkpoint_store.save("t2", RunState.initial(["b"]))
        assert list(checkpoint_store.load("t1").statuses) == ["a"]
        assert list(checkpoint_store.load("t2").statuses) == ["b"]


class TestSqliteCheckpointStore:
    """Tests specific to SqliteCheckpointStore."""

    def test_survives_reopen(self, tmp_path):
        """A new instance reads snapshots written by an earlier one."""
        db_path = tmp_path / "checkpoints.db"
        SqliteCheckpointStore(db_path).save("t1", RunState.initial(["a"], {"v": 2}))
        assert SqliteCheckpointStore(db_path).load("t1").vars == {"v": 2}
