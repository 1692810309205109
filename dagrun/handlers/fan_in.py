"""
Fan-in handler - runs one command/task over collected fan-out results.
"""

from dagrun.errors import NodeExecutionError
from dagrun.handlers.base import NodeContext, NodeHandler
from dagrun.handlers.fan_out import execute_sub_spec
from dagrun.schemas import FanInSpec, NodeOutput
from dagrun.templating import build_context, resolve_spec


class FanInHandler(NodeHandler):
    """
    Handler for reduce nodes.

    With a `source`, the source fan-out's ordered result list is bound as
    `items`. The body can always reach any upstream output through
    `outputs`.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        node = ctx.node
        spec: FanInSpec = node.spec
        state = ctx.state

        items = None
        if spec.source is not None:
            source_output = state.outputs.get(spec.source)
            if source_output is None:
                raise NodeExecutionError(node.id, f"source node '{spec.source}' has no output")
            items = source_output.result

        deterministic = (
            spec.body_deterministic if spec.body_deterministic is not None else node.deterministic
        )
        body = resolve_spec(spec.body, build_context(state.vars, state.outputs, items=items))
        ctx.logger.info("[%s] Reducing", node.id)
        return await execute_sub_spec(node.id, body, deterministic, node.timeout_s, ctx)
