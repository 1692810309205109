"""
dagrun - DAG workflow runner

Executes declarative graphs of shell commands, delegated agent tasks and
fan-out/fan-in pairs with content-hash caching and resumable runs.
"""

__version__ = "0.1.0"


__all__ = [
    "DagrunConfig",
    "load_config",
    "get_dagrun_home",
    "load_workflow",
    "run_workflow",
]

from .config import DagrunConfig, load_config, get_dagrun_home
from .loader import load_workflow
from .executor import run_workflow
