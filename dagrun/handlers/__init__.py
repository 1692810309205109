"""
Node handlers for the dagrun executor.

Handlers execute one node each, by kind:
- CommandHandler: exec nodes
- TaskHandler: task nodes, via the AgentRegistry
- FanOutHandler: map nodes
- FanInHandler: reduce nodes
"""

from dagrun.handlers.base import NodeContext, NodeHandler, run_cached
from dagrun.handlers.command import CommandHandler, execute_command
from dagrun.handlers.fan_in import FanInHandler
from dagrun.handlers.fan_out import FanOutHandler, execute_sub_spec
from dagrun.handlers.registry import HandlerRegistry
from dagrun.handlers.task import TaskHandler, execute_task

__all__ = [
    "NodeContext",
    "NodeHandler",
    "run_cached",
    "CommandHandler",
    "TaskHandler",
    "FanOutHandler",
    "FanInHandler",
    "HandlerRegistry",
    "execute_command",
    "execute_task",
    "execute_sub_spec",
]
