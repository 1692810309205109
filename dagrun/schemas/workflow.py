"""
Workflow schema - the loaded, read-only graph of nodes.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .node import Node


@dataclass(frozen=True)
class Workflow:
    """
    A workflow definition.

    Node order is the document order. Dependency ids are not checked
    against the node set here: unknown ids surface as a deadlock at
    runtime.

    Attributes:
        name: Workflow name recorded in run metadata
        nodes: Nodes in document order
        version: Document format version
        vars: Workflow-level variables exposed to templates as `vars`
        concurrency: Default fan-out concurrency ceiling
    """
    name: str
    nodes: tuple[Node, ...] = field(default_factory=tuple)
    version: str = "1"
    vars: dict[str, Any] = field(default_factory=dict)
    concurrency: Optional[int] = None

    def __post_init__(self):
        node_ids = [n.id for n in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
            raise ValueError(f"Duplicate node IDs: {duplicates}")

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def dependents(self, node_id: str) -> list[str]:
        """Ids of nodes that list node_id as a direct dependency."""
        return [n.id for n in self.nodes if node_id in n.deps]

    def unknown_dependencies(self) -> dict[str, list[str]]:
        """Map of node id -> dependency ids that name no node."""
        known = set(self.node_ids)
        missing = {}
        for node in self.nodes:
            unknown = [d for d in node.deps if d not in known]
            if unknown:
                missing[node.id] = unknown
        return missing

    def with_node(self, node: Node) -> "Workflow":
        """Return a copy with the node of the same id replaced."""
        nodes = tuple(node if n.id == node.id else n for n in self.nodes)
        return Workflow(
            name=self.name,
            nodes=nodes,
            version=self.version,
            vars=self.vars,
            concurrency=self.concurrency,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the workflow document shape."""
        result: dict[str, Any] = {
            "version": self.version,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
        }
        if self.vars:
            result["vars"] = dict(self.vars)
        if self.concurrency is not None:
            result["concurrency"] = self.concurrency
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workflow":
        """Deserialize from a validated workflow document."""
        concurrency = data.get("concurrency")
        return cls(
            name=data["name"],
            nodes=tuple(Node.from_dict(n) for n in data.get("nodes", [])),
            version=str(data.get("version", "1")),
            vars=dict(data.get("vars") or {}),
            concurrency=int(concurrency) if concurrency is not None else None,
        )
