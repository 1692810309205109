"""
dagrun.schemas - Schema definitions for workflows and runs.

Workflow -> Node -> RunState -> RunMetadata

Lifecycle:
1. Workflow/Node: Static definition loaded from YAML/JSON, immutable
2. RunState: In-memory snapshot, rebuilt every tick, checkpointed for resume
3. NodeOutput: Result of one completed node, cacheable when deterministic
4. RunMetadata: Persisted run.json mirror of statuses, timings and errors
"""

from .node import (
    NodeKind,
    Node,
    NodeSpec,
    SubSpec,
    CommandSpec,
    TaskSpec,
    FanOutSpec,
    FanInSpec,
    OutputSpec,
    sub_spec_from_dict,
)
from .workflow import (
    Workflow,
)
from .state import (
    NodeStatus,
    NodeOutput,
    FailureRecord,
    RunState,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
)
from .run_metadata import (
    RunMetadata,
    NodeRecord,
    RunStatus,
)

__all__ = [
    # Nodes
    "NodeKind",
    "Node",
    "NodeSpec",
    "SubSpec",
    "CommandSpec",
    "TaskSpec",
    "FanOutSpec",
    "FanInSpec",
    "OutputSpec",
    "sub_spec_from_dict",
    # Workflow
    "Workflow",
    # State
    "NodeStatus",
    "NodeOutput",
    "FailureRecord",
    "RunState",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
    # Run Metadata
    "RunMetadata",
    "NodeRecord",
    "RunStatus",
]
