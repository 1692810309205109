"""
Error classes for dagrun execution.

Node-level errors are raised inside handlers and caught by the executor at
the node boundary, where they become a FAILED status plus a failure record:
- NodeExecutionError: nonzero exit, capability error, missing output artifact
- NodeTimeoutError: the node exceeded its timeout and was killed
- AgentNotFoundError: a task node names an agent nobody registered
- AgentError: a registered agent failed; wrapped into NodeExecutionError

Run-level errors describe how a whole run ended:
- DeadlockError: pending nodes remain but none can ever become ready
- WorkflowFailedError: one or more nodes failed

Nothing here is retried by the executor. Retry/backoff is left to callers.
"""

from typing import Any, Optional


class DagrunError(Exception):
    """Base exception for dagrun."""
    pass


class WorkflowValidationError(DagrunError):
    """
    The workflow definition is malformed.

    Carries every problem found, not just the first one, so that
    `dagrun validate` can report them all at once.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        details = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Workflow validation failed:\n{details}")


class TemplateError(DagrunError):
    """A template expression could not be rendered."""
    pass


class InvalidTransitionError(DagrunError):
    """A node status change that the node state machine does not allow."""

    def __init__(self, node_id: str, from_status: str, to_status: str):
        self.node_id = node_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for node '{node_id}': {from_status} -> {to_status}"
        )


class NodeExecutionError(DagrunError):
    """
    A node failed during execution.

    Attributes:
        node_id: The failing node
        stderr: Captured stderr for command nodes, if any
        cause: The underlying exception, if any
    """

    def __init__(
        self,
        node_id: str,
        message: str,
        stderr: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        self.node_id = node_id
        self.stderr = stderr
        self.cause = cause
        super().__init__(f"Node '{node_id}' failed: {message}")


class NodeTimeoutError(NodeExecutionError):
    """The node ran past its timeout and its process was killed."""

    def __init__(self, node_id: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(node_id, f"timed out after {timeout_s}s")


class AgentNotFoundError(DagrunError):
    """A task node referenced an agent that is not registered."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = list(available)
        super().__init__(
            f"Agent not found: {name}. Registered: {self.available}"
        )


class AgentError(DagrunError):
    """An agent capability failed while running a task."""

    def __init__(self, agent: str, message: str, stderr: Optional[str] = None):
        self.agent = agent
        self.stderr = stderr
        super().__init__(f"Agent '{agent}' failed: {message}")


class DeadlockError(DagrunError):
    """
    Nodes remain pending but none of them can become ready.

    Raised (or recorded) when the ready frontier is empty, nothing is
    running and at least one node is still PENDING. This is the only
    detection for dependency cycles and dependencies on unknown node ids.
    """

    def __init__(self, pending_nodes: list[str]):
        self.pending_nodes = list(pending_nodes)
        super().__init__(
            "Workflow deadlock detected. Nodes still pending but none are ready: "
            + ", ".join(self.pending_nodes)
        )


class WorkflowFailedError(DagrunError):
    """The run finished with at least one FAILED node."""

    def __init__(self, failed_nodes: list[str], skipped_count: int = 0):
        self.failed_nodes = list(failed_nodes)
        self.skipped_count = skipped_count
        super().__init__(
            f"Workflow failed: {', '.join(self.failed_nodes)} failed "
            f"({skipped_count} skipped)"
        )


class ResumeError(DagrunError):
    """Resume was requested against a directory that holds no run."""
    pass


def format_error(error: BaseException) -> str:
    """Render an error for CLI output."""
    if isinstance(error, NodeExecutionError) and error.stderr:
        return f"{error}\n{error.stderr.rstrip()}"
    if isinstance(error, DagrunError):
        return str(error)
    return f"{type(error).__name__}: {error}"


def error_details(error: BaseException) -> dict[str, Any]:
    """
    Build a JSON-safe description of an error for run metadata.

    Args:
        error: Any exception

    Returns:
        Dict with type and message, plus node_id, stderr, pending_nodes
        or validation errors when the error carries them
    """
    details: dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
    }
    if isinstance(error, NodeExecutionError):
        details["node_id"] = error.node_id
        if error.stderr:
            details["stderr"] = error.stderr
        if error.cause is not None:
            details["cause"] = f"{type(error.cause).__name__}: {error.cause}"
    if isinstance(error, DeadlockError):
        details["pending_nodes"] = error.pending_nodes
    if isinstance(error, WorkflowValidationError):
        details["errors"] = error.errors
    return details
