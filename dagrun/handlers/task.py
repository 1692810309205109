"""
Task handler - delegates task nodes to a registered agent.
"""

import asyncio
import os
from pathlib import Path
from typing import Optional

from dagrun.agents import AgentContext
from dagrun.errors import NodeExecutionError, NodeTimeoutError
from dagrun.handlers.base import NodeContext, NodeHandler, cache_key_for, run_cached
from dagrun.schemas import NodeOutput, TaskSpec
from dagrun.templating import build_context, resolve_spec


def task_cache_fields(spec: TaskSpec, cwd: str) -> dict:
    """Execution-relevant fields of a resolved task spec."""
    return {
        "kind": "task",
        "agent": spec.agent,
        "prompt": spec.prompt,
        "inputs": spec.inputs,
        "env": {str(k): str(v) for k, v in spec.env.items()},
        "cwd": cwd,
    }


async def execute_task(
    label: str,
    spec: TaskSpec,
    deterministic: bool,
    timeout_s: Optional[float],
    ctx: NodeContext,
) -> NodeOutput:
    """
    Run a resolved task spec under the caching contract.

    The agent is looked up before the cache so that an unknown agent fails
    even when a cached result exists.

    Raises:
        AgentNotFoundError: If the agent is not registered
        NodeExecutionError: If the agent fails or a declared artifact is missing
        NodeTimeoutError: If the agent runs past the timeout
    """
    agent = ctx.agents.get(spec.agent)
    cwd = str(Path(spec.cwd or os.getcwd()).resolve())
    timeout = timeout_s or ctx.task_timeout_s
    cache_key = cache_key_for(task_cache_fields(spec, cwd), deterministic)

    async def produce() -> NodeOutput:
        ctx.logger.info("[%s] Running agent: %s", label, spec.agent)
        agent_ctx = AgentContext(
            node_id=label,
            prompt=str(spec.prompt),
            inputs=spec.inputs,
            env=spec.env,
            cwd=cwd,
            timeout_s=timeout,
            write_artifact=ctx.run_store.write_artifact,
            logger=ctx.logger,
        )
        try:
            res = await asyncio.wait_for(agent.run(agent_ctx), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NodeTimeoutError(label, timeout) from e
        except Exception as e:
            raise NodeExecutionError(
                label, str(e), stderr=getattr(e, "stderr", None), cause=e
            ) from e

        artifacts = list(res.artifacts)
        for declared in spec.artifacts:
            if not ctx.run_store.artifact_exists(declared):
                raise NodeExecutionError(label, f"expected artifact {declared} was not written")
            if declared not in artifacts:
                artifacts.append(declared)

        return NodeOutput(
            result=res.result,
            artifacts=tuple(artifacts),
            logs=tuple(res.logs),
        )

    return await run_cached(ctx.cache, cache_key, produce, ctx.logger, label)


class TaskHandler(NodeHandler):
    """Handler for task nodes."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        node = ctx.node
        spec = resolve_spec(node.spec, build_context(ctx.state.vars, ctx.state.outputs))
        return await execute_task(node.id, spec, node.deterministic, node.timeout_s, ctx)
