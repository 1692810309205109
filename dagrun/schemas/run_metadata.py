"""
RunMetadata schema - the persisted record of a run directory.

Mirrors node statuses, timings, outputs and errors from the in-memory
RunState so that a run can be inspected and resumed after the process
exits.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .state import NodeStatus


class RunStatus(str, Enum):
    """Overall status of a run."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class NodeRecord:
    """
    Persisted record of one node.

    Attributes:
        status: Last recorded status
        start_time: When the node entered RUNNING
        end_time: When the node reached SUCCESS/CACHED/FAILED
        duration_ms: end_time - start_time, set with end_time
        output: Serialized NodeOutput
        error: Error details if FAILED
    """
    status: NodeStatus = NodeStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    output: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.start_time is not None:
            result["start_time"] = self.start_time.isoformat()
        if self.end_time is not None:
            result["end_time"] = self.end_time.isoformat()
        if self.duration_ms is not None:
            result["duration_ms"] = self.duration_ms
        if self.output is not None:
            result["output"] = self.output
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeRecord":
        return cls(
            status=NodeStatus(data.get("status", "pending")),
            start_time=_parse_dt(data.get("start_time")),
            end_time=_parse_dt(data.get("end_time")),
            duration_ms=data.get("duration_ms"),
            output=data.get("output"),
            error=data.get("error"),
        )


@dataclass
class RunMetadata:
    """
    Persisted record of a run.

    Attributes:
        workflow_name: Name of the workflow
        thread_id: Stable resume identifier, generated once per run directory
        start_time: When the run was created
        status: Overall run status
        end_time: When the last attempt finished
        workflow_hash: SHA256 of the workflow definition of the last attempt
        checkpoint_path: Location of the checkpoint database, if any
        attempts: Number of attempts (1 + number of resumes)
        nodes: Node id -> NodeRecord
        error: Run-level error details (deadlock or failure summary)
    """
    workflow_name: str
    thread_id: str
    start_time: datetime
    status: RunStatus = RunStatus.RUNNING
    end_time: Optional[datetime] = None
    workflow_hash: Optional[str] = None
    checkpoint_path: Optional[str] = None
    attempts: int = 1
    nodes: dict[str, NodeRecord] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "workflow_name": self.workflow_name,
            "thread_id": self.thread_id,
            "start_time": self.start_time.isoformat(),
            "status": self.status.value,
            "attempts": self.attempts,
            "nodes": {nid: rec.to_dict() for nid, rec in self.nodes.items()},
        }
        if self.end_time is not None:
            result["end_time"] = self.end_time.isoformat()
        if self.workflow_hash is not None:
            result["workflow_hash"] = self.workflow_hash
        if self.checkpoint_path is not None:
            result["checkpoint_path"] = self.checkpoint_path
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunMetadata":
        return cls(
            workflow_name=data["workflow_name"],
            thread_id=data["thread_id"],
            start_time=datetime.fromisoformat(data["start_time"]),
            status=RunStatus(data.get("status", "running")),
            end_time=_parse_dt(data.get("end_time")),
            workflow_hash=data.get("workflow_hash"),
            checkpoint_path=data.get("checkpoint_path"),
            attempts=data.get("attempts", 1),
            nodes={
                nid: NodeRecord.from_dict(rec)
                for nid, rec in (data.get("nodes") or {}).items()
            },
            error=data.get("error"),
        )
