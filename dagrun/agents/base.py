"""
Agent interface and built-in agents.

Agents run delegated tasks. The executor knows agents only through this
interface and the AgentRegistry; what an agent does behind run() is its
own business:
- EchoAgent: stub capability that returns its prompt and inputs
- CommandAgent: hands the prompt to an external CLI
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from dagrun.errors import AgentError
from dagrun.process import build_env, run_process


# (relative path, content) -> artifact reference
ArtifactWriter = Callable[[str, Union[str, bytes]], str]


@dataclass
class AgentContext:
    """
    Everything an agent receives for one task.

    Attributes:
        node_id: Id of the task node (or fan-out item) being run
        prompt: Resolved prompt text
        inputs: Resolved structured inputs
        env: Environment overrides
        cwd: Working directory
        timeout_s: Time budget; the executor cancels the agent after it
        write_artifact: Writes a file into the run's artifact area
        logger: Logger scoped to the node
    """
    node_id: str
    prompt: str
    inputs: dict[str, Any]
    env: dict[str, Any]
    cwd: str
    timeout_s: float
    write_artifact: ArtifactWriter
    logger: logging.Logger


@dataclass
class AgentResult:
    """Value returned by an agent."""
    result: Any = None
    logs: list[str] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)


class Agent(ABC):
    """
    Abstract base class for agents.

    Implementations raise AgentError (or any exception) on failure; the
    task handler turns it into a node failure.
    """

    name: str = "agent"

    @abstractmethod
    async def run(self, ctx: AgentContext) -> AgentResult:
        """
        Run a task.

        Args:
            ctx: Prompt, inputs and capabilities for the task

        Returns:
            AgentResult with the task's result, logs and artifacts
        """
        pass


class EchoAgent(Agent):
    """
    Stub agent for testing and dry runs.

    Echoes the prompt and inputs back as the result and records the prompt
    as a response artifact.
    """

    name = "echo"

    async def run(self, ctx: AgentContext) -> AgentResult:
        ctx.logger.debug("[echo] prompt: %s", ctx.prompt[:100])
        artifact = ctx.write_artifact(f"{ctx.node_id}/response.md", ctx.prompt)
        return AgentResult(
            result={
                "agent": self.name,
                "prompt": ctx.prompt,
                "inputs": ctx.inputs,
                "response": ctx.prompt,
            },
            logs=["echo agent executed"],
            artifacts=[artifact],
        )


class CommandAgent(Agent):
    """
    Agent backed by an external CLI.

    Runs `command + [prompt]` in the task's cwd with the JSON-encoded inputs
    on stdin. Stdout that parses as JSON becomes the result; otherwise the
    stripped text is the result.

    Example config:
        agents:
          claude:
            command: ["claude", "-p"]
            timeout_s: 600
    """

    def __init__(self, name: str, command: list[str], timeout_s: Optional[float] = None):
        self.name = name
        self.command = list(command)
        self.timeout_s = timeout_s

    async def run(self, ctx: AgentContext) -> AgentResult:
        timeout_s = self.timeout_s or ctx.timeout_s
        argv = self.command + [ctx.prompt]
        try:
            proc = await run_process(
                argv,
                cwd=ctx.cwd,
                env=build_env(ctx.env),
                timeout_s=timeout_s,
                stdin=json.dumps(ctx.inputs),
            )
        except FileNotFoundError as e:
            raise AgentError(self.name, f"command not found: {self.command[0]}") from e

        if proc.exit_code != 0:
            raise AgentError(
                self.name,
                f"exited with code {proc.exit_code}",
                stderr=proc.stderr,
            )

        output = proc.stdout.strip()
        try:
            result = json.loads(output)
        except json.JSONDecodeError:
            result = output

        logs = [line for line in proc.stderr.splitlines() if line.strip()]
        return AgentResult(result=result, logs=logs)
