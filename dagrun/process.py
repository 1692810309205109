"""
Async subprocess execution shared by command nodes and command agents.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class ProcessResult:
    """Captured output of a finished process."""
    exit_code: int
    stdout: str
    stderr: str


def build_env(overrides: dict[str, Any]) -> dict[str, str]:
    """The current environment with node-level overrides applied."""
    env = dict(os.environ)
    env.update({str(k): str(v) for k, v in overrides.items()})
    return env


async def run_process(
    argv: list[str],
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    timeout_s: Optional[float] = None,
    stdin: Optional[str] = None,
) -> ProcessResult:
    """
    Run a process to completion and capture its output.

    The process is killed when the timeout expires or when the awaiting
    task is cancelled.

    Args:
        argv: Program and arguments (no shell)
        cwd: Working directory
        env: Full environment for the process
        timeout_s: Seconds before the process is killed
        stdin: Text written to the process's stdin

    Returns:
        ProcessResult with decoded stdout/stderr

    Raises:
        FileNotFoundError: If the program does not exist
        asyncio.TimeoutError: If the timeout expired (process already killed)
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(stdin.encode("utf-8") if stdin is not None else None),
            timeout=timeout_s,
        )
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    return ProcessResult(
        exit_code=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
