"""
Executor - drives a workflow run to completion.

The Executor implements:
- Fresh runs: every node PENDING, workflow vars fixed at start
- Resume: restore the latest checkpoint, reset FAILED/SKIPPED/RUNNING nodes
- The tick loop: scheduler evaluation, skip recording, dispatch
- Node dispatch via HandlerRegistry, catching failures at the node boundary
- Run metadata, checkpoints and structured node events

Execution flow, per tick:
1. scheduler.evaluate() on the current statuses
2. Record newly SKIPPED nodes
3. Stop if every node is terminal, or fail on deadlock
4. Mark the whole ready frontier RUNNING and dispatch it concurrently
5. Fold outputs/failures into a new RunState snapshot
6. Save a checkpoint

A failing node never cancels its siblings. Its dependents are skipped on
later ticks; independent branches keep running. The run fails if any node
failed or a deadlock was detected.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from dagrun.agents import AgentRegistry
from dagrun.cache_store import CacheStore, FileCacheStore, InMemoryCacheStore
from dagrun.checkpoint import CHECKPOINT_DB, CheckpointStore, SqliteCheckpointStore
from dagrun.errors import (
    DagrunError,
    DeadlockError,
    NodeExecutionError,
    WorkflowFailedError,
    error_details,
)
from dagrun.handlers import HandlerRegistry, NodeContext
from dagrun.loader import compute_hash
from dagrun.run_store import FileRunStore, RunStore
from dagrun.scheduler import evaluate
from dagrun.schemas import (
    Node,
    NodeOutput,
    NodeStatus,
    RunMetadata,
    RunState,
    RunStatus,
    Workflow,
)


logger = logging.getLogger(__name__)


class ExecutionResult:
    """Result of executing a workflow."""

    def __init__(
        self,
        metadata: RunMetadata,
        state: RunState,
        success: bool,
        error: Optional[DagrunError] = None,
    ):
        self.metadata = metadata
        self.state = state
        self.success = success
        self.error = error

    @property
    def thread_id(self) -> str:
        return self.metadata.thread_id

    @property
    def statuses(self) -> dict[str, NodeStatus]:
        return dict(self.state.statuses)

    @property
    def outputs(self) -> dict[str, NodeOutput]:
        return dict(self.state.outputs)

    @property
    def failed_nodes(self) -> list[str]:
        return self.state.ids_with(NodeStatus.FAILED)

    @property
    def skipped_nodes(self) -> list[str]:
        return self.state.ids_with(NodeStatus.SKIPPED)

    @property
    def deadlocked(self) -> bool:
        return isinstance(self.error, DeadlockError)


class Executor:
    """
    Execution engine for workflows.

    The whole ready frontier is dispatched concurrently on every tick; the
    tick ends when all dispatched nodes have finished.

    Usage:
        executor = Executor(
            store=FileRunStore(run_dir),
            cache=FileCacheStore("cache"),
            checkpoints=SqliteCheckpointStore(run_dir / "checkpoints.db"),
            agents=AgentRegistry.create_default(),
        )
        result = executor.execute(workflow)

        # After fixing the failing node, against the same run directory:
        result = executor.execute(fixed_workflow, resume=True)
    """

    def __init__(
        self,
        store: RunStore,
        cache: Optional[CacheStore] = None,
        checkpoints: Optional[CheckpointStore] = None,
        agents: Optional[AgentRegistry] = None,
        handlers: Optional[HandlerRegistry] = None,
        fan_out_limit: int = 5,
        task_timeout_s: float = 300.0,
    ):
        """
        Initialize the executor.

        Args:
            store: RunStore for run metadata and artifacts
            cache: CacheStore for deterministic nodes (default: in-memory)
            checkpoints: CheckpointStore for resume (default: none)
            agents: AgentRegistry for task nodes (default: echo agent only)
            handlers: HandlerRegistry for node dispatch (default: all kinds)
            fan_out_limit: Default concurrency ceiling inside fan-out nodes
            task_timeout_s: Default agent task timeout
        """
        self._store = store
        self._cache = cache if cache is not None else InMemoryCacheStore()
        self._checkpoints = checkpoints
        self._agents = agents or AgentRegistry.create_default()
        self._handlers = handlers or HandlerRegistry.create_default()
        self._fan_out_limit = fan_out_limit
        self._task_timeout_s = task_timeout_s

    def execute(
        self,
        workflow: Workflow,
        resume: bool = False,
        vars: Optional[dict[str, Any]] = None,
    ) -> ExecutionResult:
        """
        Execute a workflow.

        Args:
            workflow: The workflow to run
            resume: Continue the run held by the store from its last checkpoint
            vars: Overrides for workflow vars (fresh runs only)

        Returns:
            ExecutionResult with final state and status
        """
        return asyncio.run(self.execute_async(workflow, resume=resume, vars=vars))

    async def execute_async(
        self,
        workflow: Workflow,
        resume: bool = False,
        vars: Optional[dict[str, Any]] = None,
    ) -> ExecutionResult:
        """Async variant of execute() for callers already in an event loop."""
        checkpoint_path = None
        if isinstance(self._checkpoints, SqliteCheckpointStore):
            checkpoint_path = str(self._checkpoints.db_path)

        metadata = self._store.start(
            workflow.name,
            workflow.node_ids,
            workflow_hash=compute_hash(workflow),
            checkpoint_path=checkpoint_path,
            resume=resume,
        )
        state = self._initial_state(workflow, resume, vars)
        self._save_checkpoint(state)

        error: Optional[DagrunError] = None
        while True:
            decision = evaluate(workflow, state.statuses)
            state = state.with_ready(list(decision.ready))

            for node_id in decision.skipped:
                state = state.with_status(node_id, NodeStatus.SKIPPED)
                self._store.set_node_status(node_id, NodeStatus.SKIPPED)
                self._event("node_skipped", f"Skipped {node_id}: upstream failed", node_id)

            if decision.complete:
                break
            if decision.is_deadlock:
                error = DeadlockError(list(decision.deadlocked))
                self._event(
                    "run_deadlocked", str(error), level=logging.ERROR,
                    pending_nodes=list(decision.deadlocked),
                )
                break

            if decision.ready:
                state = await self._run_tick(workflow, state, list(decision.ready))
            self._save_checkpoint(state)

        failed = state.ids_with(NodeStatus.FAILED)
        if error is None and failed:
            error = WorkflowFailedError(failed, len(state.ids_with(NodeStatus.SKIPPED)))

        if error is None:
            self._store.complete(RunStatus.SUCCESS)
            self._event("run_completed", f"Workflow '{workflow.name}' completed")
        else:
            self._store.complete(RunStatus.FAILED, error_details(error))
            self._event("run_failed", str(error), level=logging.ERROR)

        self._save_checkpoint(state)
        return ExecutionResult(metadata, state, success=error is None, error=error)

    def _initial_state(
        self,
        workflow: Workflow,
        resume: bool,
        vars: Optional[dict[str, Any]],
    ) -> RunState:
        """Build the starting snapshot for a fresh run or a resume."""
        node_ids = workflow.node_ids
        thread_id = self._store.thread_id

        restored = None
        if resume and self._checkpoints is not None:
            restored = self._checkpoints.load(thread_id)

        if restored is None:
            if resume:
                logger.warning("No checkpoint for thread %s, starting a fresh run", thread_id)
            run_vars = {**workflow.vars, **(vars or {})}
            self._event(
                "run_started", f"Starting workflow '{workflow.name}'",
                thread_id=thread_id, nodes=len(node_ids),
            )
            return RunState.initial(node_ids, run_vars)

        state, reset = restored.reset_for_resume(node_ids)
        for node_id in reset:
            self._store.set_node_status(node_id, NodeStatus.PENDING)
        self._event(
            "run_resumed", f"Resuming workflow '{workflow.name}'",
            thread_id=thread_id, reset=reset,
        )
        return state

    async def _run_tick(self, workflow: Workflow, state: RunState, ready: list[str]) -> RunState:
        """Dispatch the ready frontier and fold the results into a new snapshot."""
        for node_id in ready:
            state = state.with_status(node_id, NodeStatus.RUNNING)
            self._store.set_node_status(node_id, NodeStatus.RUNNING)
            self._event("node_started", f"Started {node_id}", node_id)

        dispatch_state = state
        results = await asyncio.gather(
            *(self._run_node(workflow.get_node(nid), dispatch_state) for nid in ready)
        )

        for node_id, (output, exc) in zip(ready, results):
            if exc is None:
                status = NodeStatus.CACHED if output.cached else NodeStatus.SUCCESS
                state = state.with_output(node_id, output).with_status(node_id, status)
                self._store.set_node_output(node_id, output.to_dict())
                self._store.set_node_status(node_id, status)
                if output.cached:
                    self._event("node_cached", f"Cached {node_id}", node_id)
                else:
                    self._event("node_completed", f"Completed {node_id}", node_id)
            else:
                details = error_details(exc)
                details.setdefault("node_id", node_id)
                state = state.with_status(node_id, NodeStatus.FAILED).with_failure(node_id, details)
                self._store.set_node_error(node_id, details)
                self._store.set_node_status(node_id, NodeStatus.FAILED)
                self._event(
                    "node_failed", f"Failed {node_id}: {exc}", node_id,
                    level=logging.ERROR, error=details,
                )

        return state

    async def _run_node(
        self,
        node: Node,
        state: RunState,
    ) -> tuple[Optional[NodeOutput], Optional[Exception]]:
        """Run one node, returning (output, None) or (None, error)."""
        ctx = NodeContext(
            node=node,
            state=state,
            cache=self._cache,
            run_store=self._store,
            agents=self._agents,
            fan_out_limit=self._fan_out_limit,
            task_timeout_s=self._task_timeout_s,
            logger=logging.getLogger(f"dagrun.node.{node.id}"),
        )
        try:
            return await self._handlers.dispatch(ctx), None
        except Exception as e:
            if not isinstance(e, NodeExecutionError):
                logger.debug("Node %s raised %s", node.id, type(e).__name__, exc_info=True)
            return None, e

    def _save_checkpoint(self, state: RunState) -> None:
        if self._checkpoints is not None:
            self._checkpoints.save(self._store.thread_id, state)

    def _event(
        self,
        event: str,
        message: str,
        node_id: Optional[str] = None,
        level: int = logging.INFO,
        **metadata: Any,
    ) -> None:
        extra: dict[str, Any] = {"event": event}
        if node_id is not None:
            extra["node_id"] = node_id
        if metadata:
            extra["metadata"] = metadata
        logger.log(level, message, extra=extra)


def run_workflow(
    workflow: Workflow,
    run_dir: Path | str,
    cache_dir: Path | str,
    resume: bool = False,
    vars: Optional[dict[str, Any]] = None,
    agents: Optional[AgentRegistry] = None,
    fan_out_limit: Optional[int] = None,
    task_timeout_s: float = 300.0,
) -> ExecutionResult:
    """
    Execute a workflow against a run directory with file-backed stores.

    The run directory receives run.json, artifacts/ and checkpoints.db.

    Args:
        workflow: The workflow to run
        run_dir: Run directory (must already hold a run when resuming)
        cache_dir: Shared cache directory
        resume: Resume the run held by run_dir
        vars: Overrides for workflow vars
        agents: AgentRegistry (defaults to the echo agent)
        fan_out_limit: Fan-out ceiling (default: workflow concurrency, else 5)
        task_timeout_s: Default agent task timeout

    Returns:
        ExecutionResult with final state and status

    Raises:
        ResumeError: If resume is requested and run_dir holds no run
    """
    run_dir = Path(run_dir)
    store = FileRunStore.open_existing(run_dir) if resume else FileRunStore(run_dir)
    executor = Executor(
        store=store,
        cache=FileCacheStore(cache_dir),
        checkpoints=SqliteCheckpointStore(run_dir / CHECKPOINT_DB),
        agents=agents,
        fan_out_limit=fan_out_limit or workflow.concurrency or 5,
        task_timeout_s=task_timeout_s,
    )
    return executor.execute(workflow, resume=resume, vars=vars)
