"""
Node schemas - the static, immutable description of one unit of work.

A Node pairs graph information (id, deps, determinism, timeout) with a
kind-specific spec. The spec is a tagged variant:

- CommandSpec (exec): spawn a process
- TaskSpec (task): delegate to a named agent
- FanOutSpec (map): run a per-item CommandSpec/TaskSpec over a collection
- FanInSpec (reduce): run one CommandSpec/TaskSpec over collected results

Spec fields may hold template expressions. Specs round-trip through
to_dict/from_dict, which is how the template resolver produces a resolved
copy of a spec without mutating the workflow.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class NodeKind(str, Enum):
    """Execution kind of a node."""
    EXEC = "exec"
    TASK = "task"
    MAP = "map"
    REDUCE = "reduce"


@dataclass(frozen=True)
class OutputSpec:
    """
    Output verification for command nodes.

    Attributes:
        files: Paths that must exist after the command exits
        result_from_file: JSON file parsed as the node's structured result
    """
    files: tuple[str, ...] = ()
    result_from_file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"files": list(self.files)}
        if self.result_from_file is not None:
            result["json"] = {"result_from_file": self.result_from_file}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutputSpec":
        json_cfg = data.get("json") or {}
        return cls(
            files=tuple(data.get("files") or ()),
            result_from_file=json_cfg.get("result_from_file"),
        )


@dataclass(frozen=True)
class CommandSpec:
    """A process to spawn: command, args, cwd, env and output verification."""
    command: str
    args: tuple[Any, ...] = ()
    cwd: Optional[str] = None
    env: dict[str, Any] = field(default_factory=dict)
    produces: Optional[OutputSpec] = None

    kind = NodeKind.EXEC

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "command": self.command,
            "args": list(self.args),
            "env": dict(self.env),
        }
        if self.cwd is not None:
            result["cwd"] = self.cwd
        if self.produces is not None:
            result["produces"] = self.produces.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommandSpec":
        produces = data.get("produces")
        return cls(
            command=data["command"],
            args=tuple(data.get("args") or ()),
            cwd=data.get("cwd"),
            env=dict(data.get("env") or {}),
            produces=OutputSpec.from_dict(produces) if produces else None,
        )


@dataclass(frozen=True)
class TaskSpec:
    """A delegated task: agent name, prompt, structured inputs."""
    agent: str
    prompt: str
    inputs: dict[str, Any] = field(default_factory=dict)
    env: dict[str, Any] = field(default_factory=dict)
    cwd: Optional[str] = None
    artifacts: tuple[str, ...] = ()

    kind = NodeKind.TASK

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "agent": self.agent,
            "prompt": self.prompt,
            "inputs": dict(self.inputs),
            "env": dict(self.env),
        }
        if self.cwd is not None:
            result["cwd"] = self.cwd
        if self.artifacts:
            result["artifacts"] = list(self.artifacts)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskSpec":
        return cls(
            agent=data["agent"],
            prompt=data["prompt"],
            inputs=dict(data.get("inputs") or {}),
            env=dict(data.get("env") or {}),
            cwd=data.get("cwd"),
            artifacts=tuple(data.get("artifacts") or ()),
        )


# Specs a fan-out or fan-in node may run
SubSpec = Union[CommandSpec, TaskSpec]


def sub_spec_from_dict(data: dict[str, Any]) -> SubSpec:
    """
    Build the CommandSpec or TaskSpec described by a map/reduce sub-spec.

    The kind defaults to exec when a command is present, task otherwise.
    """
    kind = data.get("kind") or ("exec" if "command" in data else "task")
    if kind == NodeKind.EXEC.value:
        return CommandSpec.from_dict(data)
    if kind == NodeKind.TASK.value:
        return TaskSpec.from_dict(data)
    raise ValueError(f"Sub-spec kind must be 'exec' or 'task', got {kind!r}")


@dataclass(frozen=True)
class FanOutSpec:
    """
    Fan-out over a collection.

    Attributes:
        over: Expression (or literal list) producing the ordered collection
        item: Spec instantiated once per item, with `item` and `index` bound
        concurrency: Ceiling on concurrently running items (None = default)
        item_deterministic: Determinism of each item (None = inherit node's)
    """
    over: Any
    item: SubSpec
    concurrency: Optional[int] = None
    item_deterministic: Optional[bool] = None

    kind = NodeKind.MAP


@dataclass(frozen=True)
class FanInSpec:
    """
    Aggregation over an upstream fan-out.

    Attributes:
        body: Spec executed exactly once
        source: Fan-out node whose ordered results are bound as `items`
        body_deterministic: Determinism of the body (None = inherit node's)
    """
    body: SubSpec
    source: Optional[str] = None
    body_deterministic: Optional[bool] = None

    kind = NodeKind.REDUCE


NodeSpec = Union[CommandSpec, TaskSpec, FanOutSpec, FanInSpec]


def _sub_spec_dict(spec: SubSpec, deterministic: Optional[bool]) -> dict[str, Any]:
    data = spec.to_dict()
    if deterministic is not None:
        data["deterministic"] = deterministic
    return data


@dataclass(frozen=True)
class Node:
    """
    A node in the workflow graph.

    Attributes:
        id: Unique identifier within the workflow
        spec: Kind-specific spec (the kind is derived from it)
        deps: Ordered ids of nodes that must succeed first
        deterministic: Whether results are cached by content hash
        name: Optional human-readable label
        timeout_s: Optional timeout, fatal to this node only
    """
    id: str
    spec: NodeSpec
    deps: tuple[str, ...] = ()
    deterministic: bool = False
    name: Optional[str] = None
    timeout_s: Optional[float] = None

    @property
    def kind(self) -> NodeKind:
        return self.spec.kind

    @property
    def label(self) -> str:
        return self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the workflow document shape."""
        result: dict[str, Any] = {"id": self.id, "kind": self.kind.value}
        if self.name:
            result["name"] = self.name
        if self.deps:
            result["deps"] = list(self.deps)
        if self.deterministic:
            result["deterministic"] = True
        if self.timeout_s is not None:
            result["timeout"] = self.timeout_s

        spec = self.spec
        if isinstance(spec, (CommandSpec, TaskSpec)):
            body = spec.to_dict()
            body.pop("kind")
            result.update(body)
        elif isinstance(spec, FanOutSpec):
            result["over"] = spec.over
            result["map"] = _sub_spec_dict(spec.item, spec.item_deterministic)
            if spec.concurrency is not None:
                result["concurrency"] = spec.concurrency
        else:
            result["reduce"] = _sub_spec_dict(spec.body, spec.body_deterministic)
            if spec.source is not None:
                result["source"] = spec.source
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """
        Deserialize from a workflow document node.

        Assumes the data already passed loader validation.
        """
        kind = NodeKind(data["kind"])
        spec: NodeSpec
        if kind == NodeKind.EXEC:
            spec = CommandSpec.from_dict(data)
        elif kind == NodeKind.TASK:
            spec = TaskSpec.from_dict(data)
        elif kind == NodeKind.MAP:
            item_data = data["map"]
            spec = FanOutSpec(
                over=data["over"],
                item=sub_spec_from_dict(item_data),
                concurrency=data.get("concurrency"),
                item_deterministic=item_data.get("deterministic"),
            )
        else:
            body_data = data["reduce"]
            spec = FanInSpec(
                body=sub_spec_from_dict(body_data),
                source=data.get("source"),
                body_deterministic=body_data.get("deterministic"),
            )

        timeout = data.get("timeout")
        return cls(
            id=data["id"],
            spec=spec,
            deps=tuple(data.get("deps") or ()),
            deterministic=bool(data.get("deterministic", False)),
            name=data.get("name"),
            timeout_s=float(timeout) if timeout is not None else None,
        )
