"""
CLI interface for dagrun.

Provides commands to validate, plan, run, resume and inspect workflows.

Workflows are YAML or JSON files describing a graph of exec, task, map
and reduce nodes. Every run gets its own directory holding run.json,
artifacts/, checkpoints.db and workflow.log.jsonl; resuming a failed run
points `dagrun run --resume` back at that directory.
"""

import json
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.markup import escape
from rich.table import Table

from dagrun import __version__
from dagrun.config import ConfigError, DagrunConfig, load_config
from dagrun.errors import (
    DeadlockError,
    ResumeError,
    WorkflowValidationError,
    format_error,
)
from dagrun.schemas import NodeStatus, RunMetadata, Workflow


STATUS_STYLES = {
    NodeStatus.SUCCESS: "green",
    NodeStatus.CACHED: "cyan",
    NodeStatus.FAILED: "red",
    NodeStatus.SKIPPED: "yellow",
    NodeStatus.RUNNING: "blue",
    NodeStatus.PENDING: "dim",
}


@click.group()
@click.version_option(version=__version__, prog_name="dagrun")
@click.pass_context
def main(ctx):
    """
    dagrun - DAG workflow runner.

    Run graphs of commands and agent tasks with caching and resume.
    """
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except FileNotFoundError:
        ctx.obj["config"] = DagrunConfig()
    except ConfigError as e:
        click.echo(f"✗ Invalid config: {e}", err=True)
        raise SystemExit(1)


def _load_workflow_or_exit(path: Path) -> Workflow:
    from dagrun.loader import load_workflow

    try:
        return load_workflow(path)
    except WorkflowValidationError as e:
        click.echo("✗ Workflow validation failed:", err=True)
        for error in e.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(1)


def _parse_vars(items: tuple[str, ...]) -> dict[str, Any]:
    """Parse KEY=VALUE pairs; values are read as YAML scalars/collections."""
    parsed = {}
    for item in items:
        if "=" not in item:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--var")
        key, value = item.split("=", 1)
        try:
            parsed[key] = yaml.safe_load(value) if value else ""
        except yaml.YAMLError:
            parsed[key] = value
    return parsed


def _format_duration(duration_ms: Optional[int]) -> str:
    if duration_ms is None:
        return "-"
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    return f"{duration_ms / 1000:.1f}s"


def _node_table(metadata: RunMetadata) -> Table:
    table = Table(title=f"{metadata.workflow_name} ({metadata.status.value})")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for node_id, record in metadata.nodes.items():
        style = STATUS_STYLES.get(record.status, "")
        error = (record.error or {}).get("message", "")
        table.add_row(
            escape(node_id),
            f"[{style}]{record.status.value}[/{style}]",
            _format_duration(record.duration_ms),
            escape(error.splitlines()[0]) if error else "",
        )
    return table


# =============================================================================
# Run
# =============================================================================


@main.command("run")
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--out", "out", type=click.Path(file_okay=False, path_type=Path),
              help="Run directory (default: <runs_dir>/<timestamp>)")
@click.option("--resume", is_flag=True, help="Resume the run in --out")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Cache directory (default from config)")
@click.option("--var", "var_items", multiple=True, help="Override a workflow var (KEY=VALUE)")
@click.option("-c", "--concurrency", type=click.IntRange(min=1),
              help="Concurrency ceiling inside fan-out nodes")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def run(ctx, workflow: Path, out: Optional[Path], resume: bool, cache_dir: Optional[Path],
        var_items: tuple[str, ...], concurrency: Optional[int], verbose: bool):
    """
    Run a workflow.

    WORKFLOW is the path to a YAML or JSON workflow file.

    Examples:

        dagrun run build.yaml

        dagrun run build.yaml --out .runs/nightly --var target=prod

        dagrun run build.yaml --resume --out .runs/nightly
    """
    from dagrun.agents import AgentRegistry
    from dagrun.executor import run_workflow
    from dagrun.utils import EVENT_LOG_NAME, console, print_error, print_success, setup_logging, utcnow

    config: DagrunConfig = ctx.obj["config"]
    wf = _load_workflow_or_exit(workflow)
    run_vars = _parse_vars(var_items)

    if resume and out is None:
        raise click.UsageError("--resume requires --out pointing at an existing run directory")

    run_dir = out or Path(config.runs_dir) / utcnow().strftime("%Y-%m-%dT%H-%M-%S")
    if not resume and (run_dir / "run.json").exists():
        click.echo(f"✗ {run_dir} already holds a run. Use --resume or another --out.", err=True)
        raise SystemExit(1)

    setup_logging(
        log_file=run_dir / EVENT_LOG_NAME,
        log_level="DEBUG" if verbose else config.log_level,
        log_format=config.log_format,
    )

    try:
        result = run_workflow(
            wf,
            run_dir=run_dir,
            cache_dir=cache_dir or Path(config.cache_dir),
            resume=resume,
            vars=run_vars,
            agents=AgentRegistry.create_default(config.agents),
            fan_out_limit=concurrency or wf.concurrency or config.fan_out_limit,
            task_timeout_s=config.task_timeout_s,
        )
    except ResumeError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    console.print(_node_table(result.metadata))
    click.echo(f"Run directory: {run_dir}")

    if result.success:
        print_success(f"Workflow '{wf.name}' completed")
        return

    print_error(escape(format_error(result.error)))
    for failure in result.state.failures:
        stderr = failure.error.get("stderr")
        if stderr:
            click.echo(f"\n[{failure.node_id}] stderr:\n{stderr}")
    click.echo(f"\nTo resume: dagrun run {workflow} --resume --out {run_dir}")
    raise SystemExit(1)


# =============================================================================
# Validate / Plan / Visualize
# =============================================================================


@main.command("validate")
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(workflow: Path):
    """Validate a workflow file."""
    from dagrun.scheduler import execution_levels

    wf = _load_workflow_or_exit(workflow)
    click.echo(f"✓ Workflow '{wf.name}' is valid ({len(wf.nodes)} nodes)")

    for node_id, missing in wf.unknown_dependencies().items():
        click.echo(f"⚠ Node '{node_id}' depends on unknown node(s): {', '.join(missing)}")
    try:
        execution_levels(wf)
    except DeadlockError as e:
        click.echo(f"⚠ Nodes that can never run: {', '.join(e.pending_nodes)}")


@main.command("plan")
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def plan(workflow: Path):
    """Show execution levels (nodes in a level run concurrently)."""
    from dagrun.scheduler import execution_levels

    wf = _load_workflow_or_exit(workflow)
    try:
        levels = execution_levels(wf)
    except DeadlockError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Execution plan for '{wf.name}':")
    for index, level in enumerate(levels):
        click.echo(f"\nLevel {index}:")
        for node_id in level:
            node = wf.get_node(node_id)
            deps = f" <- {', '.join(node.deps)}" if node.deps else ""
            click.echo(f"  {node_id} ({node.kind.value}){deps}")


def _render_mermaid(wf: Workflow) -> str:
    lines = ["graph TD"]
    for node in wf.nodes:
        lines.append(f'    {node.id}["{node.label} ({node.kind.value})"]')
    for node in wf.nodes:
        for dep in node.deps:
            lines.append(f"    {dep} --> {node.id}")
    return "\n".join(lines)


def _render_ascii(wf: Workflow, levels: list[list[str]]) -> str:
    lines = []
    for index, level in enumerate(levels):
        for node_id in level:
            node = wf.get_node(node_id)
            deps = f" <- {', '.join(node.deps)}" if node.deps else ""
            lines.append(f"{'  ' * index}[{index}] {node_id} ({node.kind.value}){deps}")
    return "\n".join(lines)


@main.command("visualize")
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "fmt", type=click.Choice(["mermaid", "ascii"]), default="mermaid",
              show_default=True)
def visualize(workflow: Path, fmt: str):
    """Render the workflow graph."""
    from dagrun.scheduler import execution_levels

    wf = _load_workflow_or_exit(workflow)
    if fmt == "mermaid":
        click.echo(_render_mermaid(wf))
        return

    try:
        levels = execution_levels(wf)
    except DeadlockError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(_render_ascii(wf, levels))


# =============================================================================
# Show
# =============================================================================


@main.command("show")
@click.option("--run", "run_dir", required=True,
              type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Run directory")
@click.option("--node", "node_id", help="Show one node's output and error")
@click.option("--events", is_flag=True, help="Show structured node events")
def show(run_dir: Path, node_id: Optional[str], events: bool):
    """Show the state of a run."""
    from dagrun.run_store import load_metadata
    from dagrun.utils import EVENT_LOG_NAME, console, read_events

    metadata = load_metadata(run_dir)
    if metadata is None:
        click.echo(f"✗ No run found in {run_dir}", err=True)
        raise SystemExit(1)

    if node_id is not None:
        record = metadata.nodes.get(node_id)
        if record is None:
            click.echo(f"✗ Unknown node: {node_id}", err=True)
            raise SystemExit(1)
        click.echo(json.dumps(record.to_dict(), indent=2))
    else:
        click.echo(f"Workflow:  {metadata.workflow_name}")
        click.echo(f"Thread ID: {metadata.thread_id}")
        click.echo(f"Status:    {metadata.status.value}")
        click.echo(f"Started:   {metadata.start_time.isoformat()}")
        if metadata.end_time:
            click.echo(f"Ended:     {metadata.end_time.isoformat()}")
        click.echo(f"Attempts:  {metadata.attempts}")
        console.print(_node_table(metadata))
        if metadata.error:
            click.echo(f"Error: {metadata.error.get('message')}")

    if events:
        click.echo("\nEvents:")
        for entry in read_events(run_dir / EVENT_LOG_NAME, node_id=node_id):
            node = entry.get("node_id", "-")
            click.echo(f"  {entry['timestamp']}  {entry['event']:<15} {node:<20} {entry['message']}")


if __name__ == "__main__":
    main()
