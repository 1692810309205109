"""
Command handler - runs exec nodes as external processes.
"""

import asyncio
import json
import os
from pathlib import Path

from dagrun.errors import NodeExecutionError, NodeTimeoutError
from dagrun.handlers.base import NodeContext, NodeHandler, cache_key_for, run_cached
from dagrun.process import build_env, run_process
from dagrun.schemas import CommandSpec, NodeOutput
from dagrun.templating import build_context, resolve_spec


def command_cache_fields(spec: CommandSpec, cwd: str) -> dict:
    """Execution-relevant fields of a resolved command spec."""
    return {
        "kind": "exec",
        "command": spec.command,
        "args": [str(a) for a in spec.args],
        "cwd": cwd,
        "env": {str(k): str(v) for k, v in spec.env.items()},
        "produces": spec.produces.to_dict() if spec.produces else None,
    }


def _verify_outputs(label: str, spec: CommandSpec, cwd: str, result: dict) -> tuple[object, list[str]]:
    """Check declared files exist and load the structured result if configured."""
    if spec.produces is None:
        return result, []

    artifacts = []
    for declared in spec.produces.files:
        path = Path(cwd) / declared
        if not path.exists():
            raise NodeExecutionError(label, f"expected file {declared} was not produced")
        artifacts.append(str(path))

    if spec.produces.result_from_file:
        path = Path(cwd) / spec.produces.result_from_file
        try:
            with open(path) as f:
                return json.load(f), artifacts
        except FileNotFoundError as e:
            raise NodeExecutionError(
                label, f"result file {spec.produces.result_from_file} was not produced", cause=e
            ) from e
        except json.JSONDecodeError as e:
            raise NodeExecutionError(
                label, f"result file {spec.produces.result_from_file} is not valid JSON: {e}", cause=e
            ) from e

    return result, artifacts


async def execute_command(
    label: str,
    spec: CommandSpec,
    deterministic: bool,
    timeout_s: float | None,
    ctx: NodeContext,
) -> NodeOutput:
    """
    Run a resolved command spec under the caching contract.

    Args:
        label: Node id (or fan-out item label) used in errors and logs
        spec: Command spec with templates already resolved
        deterministic: Whether to use the cache
        timeout_s: Seconds before the process is killed
        ctx: Node context

    Returns:
        NodeOutput with {stdout, stderr, exit_code} or the parsed result file

    Raises:
        NodeExecutionError: On nonzero exit, missing program or missing output
        NodeTimeoutError: If the timeout expired
    """
    cwd = str(Path(spec.cwd or os.getcwd()).resolve())
    argv = [spec.command] + [str(a) for a in spec.args]
    cache_key = cache_key_for(command_cache_fields(spec, cwd), deterministic)

    async def produce() -> NodeOutput:
        ctx.logger.info("[%s] Running: %s", label, " ".join(argv))
        try:
            proc = await run_process(
                argv,
                cwd=cwd,
                env=build_env(spec.env),
                timeout_s=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise NodeTimeoutError(label, timeout_s) from e
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise NodeExecutionError(label, f"cannot run {spec.command}: {e}", cause=e) from e

        stdout = proc.stdout.strip()
        stderr = proc.stderr.strip()
        ctx.logger.debug("[%s] Exit code: %s", label, proc.exit_code)

        if proc.exit_code != 0:
            raise NodeExecutionError(
                label,
                f"exec failed ({proc.exit_code}): {' '.join(argv)}",
                stderr=stderr,
            )

        result, artifacts = _verify_outputs(
            label, spec, cwd, {"stdout": stdout, "stderr": stderr, "exit_code": proc.exit_code}
        )
        return NodeOutput(
            result=result,
            artifacts=tuple(artifacts),
            logs=(f"exit code {proc.exit_code}",),
        )

    return await run_cached(ctx.cache, cache_key, produce, ctx.logger, label)


class CommandHandler(NodeHandler):
    """Handler for exec nodes."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        node = ctx.node
        spec = resolve_spec(node.spec, build_context(ctx.state.vars, ctx.state.outputs))
        return await execute_command(node.id, spec, node.deterministic, node.timeout_s, ctx)
