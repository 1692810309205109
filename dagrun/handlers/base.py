"""
Base handler protocol and the shared caching contract.

Handlers execute one node each, dispatched by the Executor through the
HandlerRegistry:
- command: exec nodes, external processes
- task: task nodes, delegated to a registered agent
- fan_out: map nodes, one command/task per collection item
- fan_in: reduce nodes, one command/task over collected results

A handler returns a NodeOutput on success and raises on failure. It never
touches node statuses; the Executor owns those.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from dagrun.agents import AgentRegistry
from dagrun.cache_store import CacheStore
from dagrun.run_store import RunStore
from dagrun.schemas import Node, NodeOutput, RunState
from dagrun.utils import hash_inputs


@dataclass
class NodeContext:
    """
    Everything a handler needs to run one node.

    Attributes:
        node: The node being executed
        state: Run snapshot at dispatch time (vars and upstream outputs)
        cache: Shared result cache
        run_store: Run store, used for artifacts
        agents: Registry of agents for task nodes
        fan_out_limit: Default concurrency ceiling for fan-out items
        task_timeout_s: Default timeout for agent tasks
        logger: Logger for the node
    """
    node: Node
    state: RunState
    cache: CacheStore
    run_store: RunStore
    agents: AgentRegistry
    fan_out_limit: int = 5
    task_timeout_s: float = 300.0
    logger: logging.Logger = logging.getLogger("dagrun.handlers")


class NodeHandler(ABC):
    """
    Abstract base class for node handlers.

    Handlers receive a NodeContext and execute the corresponding node,
    returning its output.
    """

    @abstractmethod
    async def execute(self, ctx: NodeContext) -> NodeOutput:
        """
        Execute a node.

        Args:
            ctx: The NodeContext for the node

        Returns:
            The node's output (cached=True on a cache hit)

        Raises:
            Exception: If execution fails
        """
        pass


async def run_cached(
    cache: CacheStore,
    cache_key: Optional[str],
    produce: Callable[[], Awaitable[NodeOutput]],
    logger: logging.Logger,
    label: str,
) -> NodeOutput:
    """
    Apply the determinism contract around a unit of work.

    With a cache key, a hit returns the cached output without calling
    produce(); a miss calls produce() and stores its output. Without a key,
    produce() always runs and nothing is stored.

    Cache reads and writes run in a worker thread so file-backed caches do
    not stall concurrent fan-out items.

    Args:
        cache: Cache store
        cache_key: Content hash of the resolved spec, None if not deterministic
        produce: Coroutine factory doing the real work
        logger: Logger for hit/miss messages
        label: Name used in log messages

    Returns:
        NodeOutput carrying the cache key
    """
    if cache_key is not None:
        hit = await asyncio.to_thread(cache.get, cache_key)
        if hit is not None:
            logger.info("[%s] Cache hit %s", label, cache_key[:12])
            return NodeOutput.from_cache(hit, cache_key)

    output = await produce()

    if cache_key is not None:
        output = NodeOutput(
            result=output.result,
            artifacts=output.artifacts,
            logs=output.logs,
            cache_key=cache_key,
            cached=False,
        )
        await asyncio.to_thread(cache.put, cache_key, output.cache_payload())

    return output


def cache_key_for(fields: dict[str, Any], deterministic: bool) -> Optional[str]:
    """Hash the execution-relevant fields of a resolved spec, or None."""
    return hash_inputs(fields) if deterministic else None
