"""
Fan-out handler - runs a per-item command/task over a collection.

Items run concurrently under a semaphore; results are returned in input
order whatever order the items finish in. A single failing item fails the
whole node and no partial results are kept.
"""

import asyncio
import json
from typing import Any, Optional

from dagrun.errors import NodeExecutionError
from dagrun.handlers.base import NodeContext, NodeHandler, cache_key_for
from dagrun.handlers.command import execute_command
from dagrun.handlers.task import execute_task
from dagrun.schemas import CommandSpec, FanOutSpec, NodeOutput, SubSpec
from dagrun.templating import build_context, resolve, resolve_spec


async def execute_sub_spec(
    label: str,
    spec: SubSpec,
    deterministic: bool,
    timeout_s: Optional[float],
    ctx: NodeContext,
) -> NodeOutput:
    """Run a resolved map/reduce body."""
    if isinstance(spec, CommandSpec):
        return await execute_command(label, spec, deterministic, timeout_s, ctx)
    return await execute_task(label, spec, deterministic, timeout_s, ctx)


def resolve_collection(node_id: str, over: Any, context: dict[str, Any]) -> list[Any]:
    """
    Resolve a fan-out's source expression to a list.

    A string that renders to text is parsed as JSON.

    Raises:
        NodeExecutionError: If the value is not a list
    """
    value = resolve(over, context)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise NodeExecutionError(
                node_id, f"map 'over' did not resolve to a list: {value!r}", cause=e
            ) from e
    if not isinstance(value, (list, tuple)):
        raise NodeExecutionError(
            node_id, f"map 'over' did not resolve to a list: got {type(value).__name__}"
        )
    return list(value)


class FanOutHandler(NodeHandler):
    """Handler for map nodes."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        node = ctx.node
        spec: FanOutSpec = node.spec
        state = ctx.state

        items = resolve_collection(node.id, spec.over, build_context(state.vars, state.outputs))
        limit = spec.concurrency or ctx.fan_out_limit
        deterministic = (
            spec.item_deterministic if spec.item_deterministic is not None else node.deterministic
        )
        ctx.logger.info("[%s] Processing %d items (concurrency %d)", node.id, len(items), limit)

        sem = asyncio.Semaphore(limit)

        async def run_item(index: int, item: Any) -> NodeOutput:
            async with sem:
                item_context = build_context(state.vars, state.outputs, item=item, index=index)
                body = resolve_spec(spec.item, item_context)
                return await execute_sub_spec(
                    f"{node.id}[{index}]", body, deterministic, node.timeout_s, ctx
                )

        results = await asyncio.gather(
            *(run_item(i, item) for i, item in enumerate(items)),
            return_exceptions=True,
        )

        for index, result in enumerate(results):
            if isinstance(result, Exception):
                raise NodeExecutionError(
                    node.id,
                    f"item {index} failed: {result}",
                    stderr=getattr(result, "stderr", None),
                    cause=result,
                ) from result

        # Keyed for identity only; the items carry the cache entries
        cache_key = cache_key_for(
            {"kind": "map", "over": items, "item": spec.item.to_dict()}, node.deterministic
        )
        artifacts = tuple(a for out in results for a in out.artifacts)
        return NodeOutput(
            result=[out.result for out in results],
            artifacts=artifacts,
            logs=(f"processed {len(items)} items",),
            cache_key=cache_key,
            cached=bool(results) and all(out.cached for out in results),
        )
