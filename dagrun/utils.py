"""
Utility functions for dagrun.

Includes logging, hashing, timestamps and structured event reading.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console()

# File written inside every CLI run directory
EVENT_LOG_NAME = "workflow.log.jsonl"


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "structured",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for workflow execution.

    The file handler always writes structured JSON lines so that node events
    can be read back by `dagrun show --events`. The console handler follows
    log_format.

    Args:
        log_file: Path to JSONL log file (no file handler if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (rich console)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("dagrun")
    logger.setLevel(getattr(logging, log_level.upper()))
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers = []

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "node_id"):
            log_data["node_id"] = record.node_id
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def canonical_json(value: Any) -> str:
    """Serialize to JSON with sorted keys and no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def hash_inputs(value: Any) -> str:
    """
    Compute a stable SHA256 over a JSON-compatible value.

    Two values that are equal as JSON always hash the same regardless of
    dict insertion order.
    """
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def read_events(log_file: Path, node_id: Optional[str] = None) -> list[dict[str, Any]]:
    """
    Read structured node/run events from a JSONL log file.

    Lines without an "event" field (plain log messages) are ignored.

    Args:
        log_file: Path to workflow.log.jsonl
        node_id: Only return events for this node

    Returns:
        List of event dicts in file order
    """
    if not log_file.exists():
        return []

    events = []
    with open(log_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            entry = json.loads(line)
            if "event" not in entry:
                continue
            if node_id is not None and entry.get("node_id") != node_id:
                continue
            events.append(entry)
    return events


def print_success(message: str) -> None:
    """Print success message to console."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    """Print error message to console."""
    console.print(f"[bold red]✗[/bold red] {message}")
