import asyncio
import logging
import sys
from typing import Any

import pytest

from dagrun.agents import Agent, AgentContext, AgentRegistry, AgentResult
from dagrun.cache_store import InMemoryCacheStore
from dagrun.checkpoint import InMemoryCheckpointStore
from dagrun.executor import Executor
from dagrun.handlers import NodeContext
from dagrun.loader import parse_workflow
from dagrun.run_store import InMemoryRunStore
from dagrun.schemas import Node, RunState, Workflow


PYTHON = sys.executable


@pytest.fixture(autouse=True)
def isolated_dagrun_home(monkeypatch, tmp_path_factory):
    # Never read the developer's real ~/.config/dagrun
    monkeypatch.setenv("DAGRUN_HOME", str(tmp_path_factory.mktemp("dagrun_home")))


@pytest.fixture(autouse=True)
def reset_dagrun_logging():
    # The CLI attaches handlers to the "dagrun" logger
    yield
    logger = logging.getLogger("dagrun")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def py_node(node_id: str, code: str, **fields: Any) -> dict[str, Any]:
    """An exec node running an inline Python snippet."""
    return {"id": node_id, "kind": "exec", "command": PYTHON, "args": ["-c", code], **fields}


def make_workflow(*nodes: dict[str, Any], name: str = "test", **extra: Any) -> Workflow:
    return parse_workflow({"name": name, "nodes": list(nodes), **extra})


class RecordingAgent(Agent):
    """
    Test agent that records every call.

    inputs.delay (seconds) delays the answer, inputs.fail raises, and the
    result is inputs.value (or the prompt). Tracks peak concurrency.
    """

    name = "recording"

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.peak = 0

    async def run(self, ctx: AgentContext) -> AgentResult:
        self.calls.append({"prompt": ctx.prompt, "inputs": ctx.inputs})
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(float(ctx.inputs.get("delay", 0)))
            if ctx.inputs.get("fail"):
                raise RuntimeError(f"asked to fail: {ctx.prompt}")
            return AgentResult(result=ctx.inputs.get("value", ctx.prompt), logs=["recorded"])
        finally:
            self.active -= 1


@pytest.fixture
def recording_agent() -> RecordingAgent:
    return RecordingAgent()


@pytest.fixture
def agents(recording_agent) -> AgentRegistry:
    registry = AgentRegistry.create_default()
    registry.register("recording", recording_agent)
    return registry


@pytest.fixture
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def checkpoints() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def executor(run_store, cache, checkpoints, agents) -> Executor:
    return Executor(store=run_store, cache=cache, checkpoints=checkpoints, agents=agents)


@pytest.fixture
def node_context(run_store, cache, agents):
    """Factory for a NodeContext around a node dict."""
    def _make(node_data: dict[str, Any], state: RunState | None = None, **kwargs: Any) -> NodeContext:
        return NodeContext(
            node=Node.from_dict(node_data),
            state=state or RunState(),
            cache=cache,
            run_store=run_store,
            agents=agents,
            **kwargs,
        )
    return _make
