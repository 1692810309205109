"""Tests for workflow loading and validation.

Tests cover:
- Loading YAML and JSON workflow files
- Validation errors reported all at once
- Unknown dependencies and cycles are accepted (runtime deadlock)
- Content hashing
"""

import json

import pytest
import yaml

from dagrun.errors import WorkflowValidationError
from dagrun.loader import compute_hash, load_workflow, parse_workflow, validate_workflow
from dagrun.schemas import NodeKind


VALID = {
    "name": "pipeline",
    "vars": {"files": ["a.txt", "b.txt"]},
    "nodes": [
        {"id": "fetch", "kind": "exec", "command": "curl", "args": ["-O", "x"]},
        {"id": "review", "kind": "task", "agent": "echo", "prompt": "Review", "deps": ["fetch"]},
        {
            "id": "each", "kind": "map", "over": "{{ vars.files }}", "deps": ["fetch"],
            "map": {"command": "wc", "args": ["-l", "{{ item }}"]},
        },
        {
            "id": "total", "kind": "reduce", "source": "each", "deps": ["each"],
            "reduce": {"agent": "echo", "prompt": "{{ items | length }}"},
        },
    ],
}


# =============================================================================
# Loading
# =============================================================================


class TestLoadWorkflow:
    """Tests for load_workflow."""

    def test_load_yaml(self, tmp_path):
        """YAML workflows load into a Workflow."""
        path = tmp_path / "wf.yaml"
        path.write_text(yaml.dump(VALID))

        wf = load_workflow(path)

        assert wf.name == "pipeline"
        assert [n.kind for n in wf.nodes] == [
            NodeKind.EXEC, NodeKind.TASK, NodeKind.MAP, NodeKind.REDUCE,
        ]

    def test_load_json(self, tmp_path):
        """JSON workflows load too."""
        path = tmp_path / "wf.json"
        path.write_text(json.dumps(VALID))
        assert load_workflow(path).node_ids == ["fetch", "review", "each", "total"]

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Workflow file not found"):
            load_workflow(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path):
        """Unknown suffixes are a validation error."""
        path = tmp_path / "wf.toml"
        path.write_text("name = 'x'")
        with pytest.raises(WorkflowValidationError, match="Unsupported file format"):
            load_workflow(path)

    def test_invalid_yaml(self, tmp_path):
        """Broken YAML is a validation error."""
        path = tmp_path / "wf.yaml"
        path.write_text("name: [unclosed\n")
        with pytest.raises(WorkflowValidationError, match="Invalid YAML syntax"):
            load_workflow(path)


# =============================================================================
# Validation
# =============================================================================


class TestValidateWorkflow:
    """Tests for validate_workflow."""

    def test_valid_document(self):
        """The reference document has no problems."""
        assert validate_workflow(VALID) == []

    def test_not_a_mapping(self):
        """Top-level lists are rejected."""
        assert validate_workflow([1, 2]) == ["Workflow must be a mapping, got list"]

    def test_reports_every_problem(self):
        """All problems are reported, not just the first one."""
        errors = validate_workflow({
            "nodes": [
                {"id": "a", "kind": "exec"},
                {"id": "b", "kind": "task", "agent": "echo"},
                {"id": "c", "kind": "bogus"},
            ],
        })
        assert "'name' is required" in errors
        assert "Node 'a': 'command' is required for exec" in errors
        assert "Node 'b': 'prompt' is required for task" in errors
        assert any(e.startswith("Node 'c': kind must be one of") for e in errors)

    def test_empty_nodes(self):
        """A workflow needs at least one node."""
        assert "'nodes' must be a non-empty list" in validate_workflow({"name": "x", "nodes": []})

    def test_duplicate_ids(self):
        """Duplicate node ids are reported."""
        errors = validate_workflow({
            "name": "x",
            "nodes": [
                {"id": "a", "kind": "exec", "command": "true"},
                {"id": "a", "kind": "exec", "command": "true"},
            ],
        })
        assert errors == ["Node 'a': duplicate id"]

    def test_self_dependency(self):
        """A node cannot depend on itself."""
        errors = validate_workflow({
            "name": "x",
            "nodes": [{"id": "a", "kind": "exec", "command": "true", "deps": ["a"]}],
        })
        assert errors == ["Node 'a': depends on itself"]

    def test_map_requires_over_and_body(self):
        """Map nodes need both 'over' and 'map'."""
        errors = validate_workflow({"name": "x", "nodes": [{"id": "m", "kind": "map"}]})
        assert "Node 'm': 'over' is required for map" in errors
        assert "Node 'm': 'map' is required for map" in errors

    def test_map_body_is_validated(self):
        """Problems inside a map body are prefixed with the node."""
        errors = validate_workflow({
            "name": "x",
            "nodes": [{"id": "m", "kind": "map", "over": [1], "map": {"kind": "exec"}}],
        })
        assert errors == ["Node 'm' map: 'command' is required for exec"]

    def test_reduce_requires_body(self):
        """Reduce nodes need a 'reduce' body."""
        errors = validate_workflow({"name": "x", "nodes": [{"id": "r", "kind": "reduce"}]})
        assert errors == ["Node 'r': 'reduce' is required for reduce"]

    def test_reduce_source_must_be_a_dependency(self):
        """A reduce cannot run before its source fan-out, so source must be in deps."""
        errors = validate_workflow({
            "name": "x",
            "nodes": [
                {"id": "m", "kind": "map", "over": [1, 2], "map": {"command": "true"}},
                {"id": "r", "kind": "reduce", "source": "m", "reduce": {"command": "true"}},
            ],
        })
        assert errors == ["Node 'r': source 'm' must be listed in 'deps'"]

    @pytest.mark.parametrize("timeout", [0, -1, "10", True])
    def test_invalid_timeout(self, timeout):
        """Timeouts must be positive numbers of seconds."""
        errors = validate_workflow({
            "name": "x",
            "nodes": [{"id": "a", "kind": "exec", "command": "true", "timeout": timeout}],
        })
        assert errors == ["Node 'a': 'timeout' must be a positive number of seconds"]

    def test_unknown_dependency_accepted(self):
        """Unknown dependency ids are left for the runtime deadlock check."""
        wf = parse_workflow({
            "name": "x",
            "nodes": [{"id": "a", "kind": "exec", "command": "true", "deps": ["ghost"]}],
        })
        assert wf.unknown_dependencies() == {"a": ["ghost"]}

    def test_cycle_accepted(self):
        """Cycles are left for the runtime deadlock check."""
        wf = parse_workflow({
            "name": "x",
            "nodes": [
                {"id": "a", "kind": "exec", "command": "true", "deps": ["b"]},
                {"id": "b", "kind": "exec", "command": "true", "deps": ["a"]},
            ],
        })
        assert wf.node_ids == ["a", "b"]

    def test_parse_raises_with_all_errors(self):
        """parse_workflow raises WorkflowValidationError carrying every problem."""
        with pytest.raises(WorkflowValidationError) as exc_info:
            parse_workflow({"nodes": "nope"})
        assert exc_info.value.errors == ["'name' is required", "'nodes' must be a non-empty list"]


# =============================================================================
# Hashing
# =============================================================================


class TestComputeHash:
    """Tests for compute_hash."""

    def test_hash_is_stable(self):
        """The same definition always hashes the same."""
        assert compute_hash(parse_workflow(VALID)) == compute_hash(parse_workflow(VALID))

    def test_hash_changes_with_definition(self):
        """Changing a node changes the hash."""
        changed = json.loads(json.dumps(VALID))
        changed["nodes"][0]["args"] = ["-O", "y"]
        assert compute_hash(parse_workflow(VALID)) != compute_hash(parse_workflow(changed))

    def test_hash_is_sha256_hex(self):
        """Hashes are 64 hex characters."""
        digest = compute_hash(parse_workflow(VALID))
        assert len(digest) == 64
        int(digest, 16)
