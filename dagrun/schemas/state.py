"""
Execution state schemas.

NodeStatus follows a small state machine:

    PENDING -> RUNNING -> SUCCESS | CACHED | FAILED
    PENDING -> SKIPPED

A node leaves PENDING once and only enters SKIPPED before ever running.
The one exception is resume, which puts FAILED/SKIPPED nodes back to
PENDING through RunState.reset_for_resume().

RunState is immutable: each update returns a new snapshot, and the
executor folds handler results into a fresh snapshot every tick.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from dagrun.errors import InvalidTransitionError


class NodeStatus(str, Enum):
    """Status of a node within a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    CACHED = "cached"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_satisfied(self) -> bool:
        """Whether dependents may run after this status."""
        return self in (NodeStatus.SUCCESS, NodeStatus.CACHED)

    @property
    def is_blocking(self) -> bool:
        """Whether dependents must be skipped after this status."""
        return self in (NodeStatus.FAILED, NodeStatus.SKIPPED)


TERMINAL_STATUSES = frozenset({
    NodeStatus.SUCCESS,
    NodeStatus.CACHED,
    NodeStatus.FAILED,
    NodeStatus.SKIPPED,
})

VALID_TRANSITIONS: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.RUNNING, NodeStatus.SKIPPED}),
    NodeStatus.RUNNING: frozenset({NodeStatus.SUCCESS, NodeStatus.CACHED, NodeStatus.FAILED}),
    NodeStatus.SUCCESS: frozenset(),
    NodeStatus.CACHED: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.SKIPPED: frozenset(),
}

# Statuses put back to PENDING on resume. RUNNING only survives in a
# snapshot when the previous process died mid-node.
RESUMABLE_STATUSES = frozenset({NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.RUNNING})


@dataclass(frozen=True)
class NodeOutput:
    """
    The output of a completed node.

    Attributes:
        result: Opaque result value (command default: stdout/stderr/exit_code)
        artifacts: Paths of artifacts the node produced
        logs: Optional log lines
        cache_key: Content hash of the resolved spec, set iff deterministic
        cached: True when the output came from the cache
    """
    result: Any = None
    artifacts: tuple[str, ...] = ()
    logs: tuple[str, ...] = ()
    cache_key: Optional[str] = None
    cached: bool = False

    def cache_payload(self) -> dict[str, Any]:
        """The cacheable part of the output (no cache metadata)."""
        return {
            "result": self.result,
            "artifacts": list(self.artifacts),
            "logs": list(self.logs),
        }

    @classmethod
    def from_cache(cls, payload: dict[str, Any], cache_key: str) -> "NodeOutput":
        return cls(
            result=payload.get("result"),
            artifacts=tuple(payload.get("artifacts") or ()),
            logs=tuple(payload.get("logs") or ()),
            cache_key=cache_key,
            cached=True,
        )

    def to_dict(self) -> dict[str, Any]:
        result = self.cache_payload()
        result["cached"] = self.cached
        if self.cache_key is not None:
            result["cache_key"] = self.cache_key
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeOutput":
        return cls(
            result=data.get("result"),
            artifacts=tuple(data.get("artifacts") or ()),
            logs=tuple(data.get("logs") or ()),
            cache_key=data.get("cache_key"),
            cached=data.get("cached", False),
        )


@dataclass(frozen=True)
class FailureRecord:
    """A failed node and the details of its error."""
    node_id: str
    error: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"node_id": self.node_id, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailureRecord":
        return cls(node_id=data["node_id"], error=data.get("error", {}))


@dataclass(frozen=True)
class RunState:
    """
    Snapshot of a run in progress.

    Attributes:
        vars: Workflow-level variables, fixed at initialization
        outputs: Node id -> NodeOutput, written once per node
        statuses: Node id -> NodeStatus
        ready: Ready frontier of the last tick (recomputed, never accumulated)
        failures: One record per FAILED node
    """
    vars: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, NodeOutput] = field(default_factory=dict)
    statuses: dict[str, NodeStatus] = field(default_factory=dict)
    ready: tuple[str, ...] = ()
    failures: tuple[FailureRecord, ...] = ()

    @classmethod
    def initial(cls, node_ids: list[str], vars: Optional[dict[str, Any]] = None) -> "RunState":
        """A fresh snapshot with every node PENDING."""
        return cls(
            vars=dict(vars or {}),
            statuses={nid: NodeStatus.PENDING for nid in node_ids},
        )

    def status_of(self, node_id: str) -> NodeStatus:
        return self.statuses[node_id]

    def with_status(self, node_id: str, status: NodeStatus) -> "RunState":
        """
        Return a snapshot with one node moved to a new status.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        current = self.statuses.get(node_id, NodeStatus.PENDING)
        if status not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(node_id, current.value, status.value)
        statuses = dict(self.statuses)
        statuses[node_id] = status
        return replace(self, statuses=statuses)

    def with_output(self, node_id: str, output: NodeOutput) -> "RunState":
        """
        Return a snapshot with a node's output recorded.

        Raises:
            ValueError: If the node already has an output
        """
        if node_id in self.outputs:
            raise ValueError(f"Output for node '{node_id}' already recorded")
        outputs = dict(self.outputs)
        outputs[node_id] = output
        return replace(self, outputs=outputs)

    def with_failure(self, node_id: str, error: dict[str, Any]) -> "RunState":
        return replace(self, failures=self.failures + (FailureRecord(node_id, error),))

    def with_ready(self, ready: list[str]) -> "RunState":
        return replace(self, ready=tuple(ready))

    def reset_for_resume(self, node_ids: list[str]) -> tuple["RunState", list[str]]:
        """
        Prepare a restored snapshot for another attempt.

        FAILED, SKIPPED and interrupted RUNNING nodes go back to PENDING and
        the failure records are cleared. SUCCESS/CACHED nodes keep their
        status and output. Nodes missing from the snapshot start PENDING;
        snapshot entries for nodes no longer in the workflow are dropped.

        Args:
            node_ids: Node ids of the workflow being resumed

        Returns:
            Tuple of (new snapshot, ids that were reset)
        """
        statuses = {}
        reset = []
        for nid in node_ids:
            status = self.statuses.get(nid, NodeStatus.PENDING)
            if status in RESUMABLE_STATUSES:
                reset.append(nid)
                status = NodeStatus.PENDING
            statuses[nid] = status

        outputs = {
            nid: out for nid, out in self.outputs.items()
            if statuses.get(nid, NodeStatus.PENDING).is_satisfied
        }
        state = replace(self, statuses=statuses, outputs=outputs, ready=(), failures=())
        return state, reset

    def ids_with(self, *statuses: NodeStatus) -> list[str]:
        return [nid for nid, s in self.statuses.items() if s in statuses]

    @property
    def is_complete(self) -> bool:
        """True when every node reached a terminal status."""
        return all(s.is_terminal for s in self.statuses.values())

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the checkpoint backend."""
        return {
            "vars": self.vars,
            "outputs": {nid: out.to_dict() for nid, out in self.outputs.items()},
            "statuses": {nid: s.value for nid, s in self.statuses.items()},
            "ready": list(self.ready),
            "failures": [f.to_dict() for f in self.failures],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunState":
        return cls(
            vars=dict(data.get("vars") or {}),
            outputs={
                nid: NodeOutput.from_dict(out)
                for nid, out in (data.get("outputs") or {}).items()
            },
            statuses={
                nid: NodeStatus(s) for nid, s in (data.get("statuses") or {}).items()
            },
            ready=tuple(data.get("ready") or ()),
            failures=tuple(FailureRecord.from_dict(f) for f in data.get("failures") or ()),
        )
