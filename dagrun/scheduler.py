"""
Scheduler - decide, from node statuses alone, what happens next.

evaluate() is a pure function of (workflow, statuses). Called once per tick
by the executor, it returns:
- ready: PENDING nodes whose dependencies are all SUCCESS/CACHED
- skipped: PENDING nodes with a FAILED/SKIPPED dependency
- complete: every node is terminal
- deadlocked: PENDING nodes that can never become ready

Skips propagate one level per tick: a node skipped this tick is itself a
blocking dependency on the next evaluation.
"""

from dataclasses import dataclass
from typing import Mapping

from dagrun.errors import DeadlockError
from dagrun.schemas import NodeStatus, Workflow


@dataclass(frozen=True)
class TickDecision:
    """Result of one scheduler evaluation."""
    ready: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    complete: bool = False
    deadlocked: tuple[str, ...] = ()

    @property
    def is_deadlock(self) -> bool:
        return bool(self.deadlocked)


def evaluate(workflow: Workflow, statuses: Mapping[str, NodeStatus]) -> TickDecision:
    """
    Evaluate one tick.

    Nodes missing from statuses count as PENDING. A dependency id that names
    no node is never satisfied, so its dependents end up deadlocked.

    Args:
        workflow: The workflow graph
        statuses: Current status of each node

    Returns:
        TickDecision for this tick
    """
    ready = []
    skipped = []
    pending = []
    running = False

    for node in workflow.nodes:
        status = statuses.get(node.id, NodeStatus.PENDING)
        if status == NodeStatus.RUNNING:
            running = True
            continue
        if status != NodeStatus.PENDING:
            continue

        pending.append(node.id)
        dep_statuses = [statuses.get(dep) for dep in node.deps]
        if any(s is not None and s.is_blocking for s in dep_statuses):
            skipped.append(node.id)
        elif all(s is not None and s.is_satisfied for s in dep_statuses):
            ready.append(node.id)

    complete = not pending and not running
    deadlocked: tuple[str, ...] = ()
    if pending and not ready and not skipped and not running:
        deadlocked = tuple(pending)

    return TickDecision(
        ready=tuple(ready),
        skipped=tuple(skipped),
        complete=complete,
        deadlocked=deadlocked,
    )


def execution_levels(workflow: Workflow) -> list[list[str]]:
    """
    Group nodes into levels by dependency depth.

    Level 0 holds nodes without dependencies; every node sits one level
    below its deepest dependency. Nodes in the same level can run
    concurrently.

    Raises:
        DeadlockError: If a cycle or unknown dependency leaves nodes unplaced
    """
    remaining = {n.id: set(n.deps) for n in workflow.nodes}
    placed: set[str] = set()
    levels = []

    while remaining:
        level = [nid for nid, deps in remaining.items() if deps <= placed]
        if not level:
            raise DeadlockError(sorted(remaining))
        levels.append(level)
        placed.update(level)
        for nid in level:
            del remaining[nid]

    return levels
