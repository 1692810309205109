"""
Agents for delegated task nodes.

- Agent: Abstract base class for agents
- AgentRegistry: Name -> agent lookup injected into the executor
- EchoAgent: Stub agent for tests and dry runs
- CommandAgent: Agent backed by an external CLI
"""

from dagrun.agents.base import (
    Agent,
    AgentContext,
    AgentResult,
    ArtifactWriter,
    CommandAgent,
    EchoAgent,
)
from dagrun.agents.registry import AgentRegistry

__all__ = [
    "Agent",
    "AgentContext",
    "AgentResult",
    "ArtifactWriter",
    "AgentRegistry",
    "CommandAgent",
    "EchoAgent",
]
