"""
Agent Registry for resolving task nodes to agent implementations.

The registry maps agent names used in workflow files (agent: echo) to
Agent instances. It is injected into the executor, which never refers to
a concrete agent itself.
"""

from typing import Any, Optional

from dagrun.agents.base import Agent, CommandAgent, EchoAgent
from dagrun.errors import AgentNotFoundError


class AgentRegistry:
    """
    Registry for agents by name.

    Usage:
        registry = AgentRegistry()
        registry.register("echo", EchoAgent())

        agent = registry.get("echo")

        # Or use factory with defaults and configured CLI agents
        registry = AgentRegistry.create_default(config.agents)
    """

    def __init__(self) -> None:
        """Initialize an empty agent registry."""
        self._agents: dict[str, Agent] = {}

    def register(self, name: str, agent: Agent) -> None:
        """
        Register an agent under a name.

        Args:
            name: Name referenced by task nodes
            agent: Agent instance
        """
        self._agents[name] = agent

    def get(self, name: str) -> Agent:
        """
        Get an agent by name.

        Raises:
            AgentNotFoundError: If no agent is registered under the name
        """
        if name not in self._agents:
            raise AgentNotFoundError(name, self.list_agents())
        return self._agents[name]

    def has(self, name: str) -> bool:
        return name in self._agents

    def list_agents(self) -> list[str]:
        """
        List all registered agent names.

        Returns:
            Sorted list of agent names
        """
        return sorted(self._agents)

    @classmethod
    def create_default(
        cls,
        agent_configs: Optional[dict[str, dict[str, Any]]] = None,
    ) -> "AgentRegistry":
        """
        Create a registry with the echo agent plus configured CLI agents.

        Args:
            agent_configs: name -> {"command": [...], "timeout_s": n}

        Returns:
            Configured AgentRegistry
        """
        registry = cls()
        registry.register(EchoAgent.name, EchoAgent())

        for name, cfg in (agent_configs or {}).items():
            registry.register(
                name,
                CommandAgent(name, cfg["command"], timeout_s=cfg.get("timeout_s")),
            )

        return registry
