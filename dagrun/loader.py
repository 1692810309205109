"""
Workflow loading - parse and validate workflow definitions.

The loader provides:
- Loading workflows from YAML or JSON files
- Structural validation that reports every problem at once
- Content-addressable hashing of the definition

Dependency ids that name no node, and dependency cycles, are not rejected
here. They surface at runtime as a deadlock naming the stuck nodes.
"""

import json
from pathlib import Path
from typing import Any, Union

import yaml

from dagrun.errors import WorkflowValidationError
from dagrun.schemas import NodeKind, Workflow
from dagrun.utils import hash_inputs


NODE_KINDS = tuple(k.value for k in NodeKind)
SUB_SPEC_KINDS = (NodeKind.EXEC.value, NodeKind.TASK.value)


def _load_file(path: Path) -> Any:
    """
    Load a definition file (YAML or JSON).

    Raises:
        ValueError: If file format is unsupported or parsing fails
    """
    suffix = path.suffix.lower()

    with open(path) as f:
        if suffix in (".yaml", ".yml"):
            try:
                return yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML syntax: {e}") from e
        elif suffix == ".json":
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON syntax: {e}") from e
        else:
            raise ValueError(f"Unsupported file format: {suffix}")


def _validate_exec(prefix: str, data: dict, errors: list[str]) -> None:
    if not isinstance(data.get("command"), str) or not data.get("command"):
        errors.append(f"{prefix}: 'command' is required for exec")
    if "args" in data and not isinstance(data["args"], list):
        errors.append(f"{prefix}: 'args' must be a list")
    if "env" in data and not isinstance(data["env"], dict):
        errors.append(f"{prefix}: 'env' must be a mapping")
    produces = data.get("produces")
    if produces is not None:
        if not isinstance(produces, dict):
            errors.append(f"{prefix}: 'produces' must be a mapping")
        elif "files" in produces and not isinstance(produces["files"], list):
            errors.append(f"{prefix}: 'produces.files' must be a list")


def _validate_task(prefix: str, data: dict, errors: list[str]) -> None:
    if not isinstance(data.get("agent"), str) or not data.get("agent"):
        errors.append(f"{prefix}: 'agent' is required for task")
    if not isinstance(data.get("prompt"), str):
        errors.append(f"{prefix}: 'prompt' is required for task")
    if "inputs" in data and not isinstance(data["inputs"], dict):
        errors.append(f"{prefix}: 'inputs' must be a mapping")
    if "env" in data and not isinstance(data["env"], dict):
        errors.append(f"{prefix}: 'env' must be a mapping")
    if "artifacts" in data and not isinstance(data["artifacts"], list):
        errors.append(f"{prefix}: 'artifacts' must be a list")


def _validate_sub_spec(prefix: str, data: Any, errors: list[str]) -> None:
    if not isinstance(data, dict):
        errors.append(f"{prefix}: must be a mapping")
        return
    kind = data.get("kind") or ("exec" if "command" in data else "task")
    if kind not in SUB_SPEC_KINDS:
        errors.append(f"{prefix}: kind must be one of {SUB_SPEC_KINDS}, got {kind!r}")
    elif kind == NodeKind.EXEC.value:
        _validate_exec(prefix, data, errors)
    else:
        _validate_task(prefix, data, errors)


def _validate_node(index: int, node: Any, seen: set[str], errors: list[str]) -> None:
    if not isinstance(node, dict):
        errors.append(f"nodes[{index}]: must be a mapping")
        return

    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id:
        errors.append(f"nodes[{index}]: 'id' is required")
        prefix = f"nodes[{index}]"
    else:
        prefix = f"Node '{node_id}'"
        if node_id in seen:
            errors.append(f"{prefix}: duplicate id")
        seen.add(node_id)

    deps = node.get("deps", [])
    if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
        errors.append(f"{prefix}: 'deps' must be a list of node ids")
    elif node_id in deps:
        errors.append(f"{prefix}: depends on itself")

    timeout = node.get("timeout")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        errors.append(f"{prefix}: 'timeout' must be a positive number of seconds")

    kind = node.get("kind")
    if kind not in NODE_KINDS:
        errors.append(f"{prefix}: kind must be one of {NODE_KINDS}, got {kind!r}")
    elif kind == NodeKind.EXEC.value:
        _validate_exec(prefix, node, errors)
    elif kind == NodeKind.TASK.value:
        _validate_task(prefix, node, errors)
    elif kind == NodeKind.MAP.value:
        if "over" not in node:
            errors.append(f"{prefix}: 'over' is required for map")
        if "map" not in node:
            errors.append(f"{prefix}: 'map' is required for map")
        else:
            _validate_sub_spec(f"{prefix} map", node["map"], errors)
        concurrency = node.get("concurrency")
        if concurrency is not None and (not isinstance(concurrency, int) or concurrency < 1):
            errors.append(f"{prefix}: 'concurrency' must be a positive integer")
    else:
        if "reduce" not in node:
            errors.append(f"{prefix}: 'reduce' is required for reduce")
        else:
            _validate_sub_spec(f"{prefix} reduce", node["reduce"], errors)
        source = node.get("source")
        if source is not None and not isinstance(source, str):
            errors.append(f"{prefix}: 'source' must be a node id")
        elif source is not None and isinstance(deps, list) and source not in deps:
            errors.append(f"{prefix}: source '{source}' must be listed in 'deps'")


def validate_workflow(data: Any) -> list[str]:
    """
    Validate a parsed workflow document.

    Args:
        data: Parsed YAML/JSON document

    Returns:
        List of problems, empty if the document is valid
    """
    if not isinstance(data, dict):
        return [f"Workflow must be a mapping, got {type(data).__name__}"]

    errors: list[str] = []
    if not isinstance(data.get("name"), str) or not data.get("name"):
        errors.append("'name' is required")
    if "vars" in data and not isinstance(data["vars"], dict):
        errors.append("'vars' must be a mapping")
    concurrency = data.get("concurrency")
    if concurrency is not None and (not isinstance(concurrency, int) or concurrency < 1):
        errors.append("'concurrency' must be a positive integer")

    nodes = data.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        errors.append("'nodes' must be a non-empty list")
        return errors

    seen: set[str] = set()
    for index, node in enumerate(nodes):
        _validate_node(index, node, seen, errors)

    return errors


def parse_workflow(data: Any) -> Workflow:
    """
    Validate a parsed document and build the Workflow.

    Raises:
        WorkflowValidationError: If the document is invalid
    """
    errors = validate_workflow(data)
    if errors:
        raise WorkflowValidationError(errors)
    return Workflow.from_dict(data)


def load_workflow(path: Union[Path, str]) -> Workflow:
    """
    Load a workflow from a YAML or JSON file.

    Args:
        path: Path to the workflow file

    Returns:
        The loaded Workflow

    Raises:
        FileNotFoundError: If the file does not exist
        WorkflowValidationError: If the file cannot be parsed or is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {path}")

    try:
        data = _load_file(path)
    except ValueError as e:
        raise WorkflowValidationError([f"Failed to load {path}: {e}"]) from e

    return parse_workflow(data)


def compute_hash(workflow: Workflow) -> str:
    """
    Compute SHA256 hash of a workflow for content-addressable lookup.

    Uses canonical JSON serialization (sorted keys, no whitespace).
    """
    return hash_inputs(workflow.to_dict())
