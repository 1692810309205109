"""
Handler Registry for dispatching nodes to the handler for their kind.

The Executor resolves every dispatched node through the registry, so a
kind can be re-implemented (e.g. a dry-run handler) without touching the
Executor.
"""

from dagrun.handlers.base import NodeContext, NodeHandler
from dagrun.handlers.command import CommandHandler
from dagrun.handlers.fan_in import FanInHandler
from dagrun.handlers.fan_out import FanOutHandler
from dagrun.handlers.task import TaskHandler
from dagrun.schemas import NodeKind, NodeOutput


class HandlerRegistry:
    """
    Registry for handler dispatch by node kind.

    Usage:
        registry = HandlerRegistry.create_default()
        output = await registry.dispatch(ctx)
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._handlers: dict[NodeKind, NodeHandler] = {}

    def register(self, kind: NodeKind, handler: NodeHandler) -> None:
        """
        Register a handler for a node kind.

        Args:
            kind: Node kind
            handler: Handler instance for this kind
        """
        self._handlers[kind] = handler

    def get(self, kind: NodeKind) -> NodeHandler:
        """
        Get handler for a node kind.

        Raises:
            KeyError: If no handler registered for this kind
        """
        if kind not in self._handlers:
            registered = [k.value for k in self._handlers]
            raise KeyError(
                f"No handler registered for kind: {kind.value}. "
                f"Registered: {registered}"
            )
        return self._handlers[kind]

    def has(self, kind: NodeKind) -> bool:
        return kind in self._handlers

    async def dispatch(self, ctx: NodeContext) -> NodeOutput:
        """Execute a node with the handler for its kind."""
        return await self.get(ctx.node.kind).execute(ctx)

    @classmethod
    def create_default(cls) -> "HandlerRegistry":
        """Create a registry with handlers for all four node kinds."""
        registry = cls()
        registry.register(NodeKind.EXEC, CommandHandler())
        registry.register(NodeKind.TASK, TaskHandler())
        registry.register(NodeKind.MAP, FanOutHandler())
        registry.register(NodeKind.REDUCE, FanInHandler())
        return registry
