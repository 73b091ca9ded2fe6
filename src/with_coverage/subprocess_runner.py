"""Blocking child-process execution shared by every coverage run phase.

Commands either inherit the terminal (the user's workload, the interactive
shell and the report tool) or have their output captured (probes).  A hung
child blocks the run until it exits.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass
class SubprocessResult:
    """Result of subprocess execution."""

    returncode: int
    """Exit code of the process."""

    stdout: str
    """Standard output captured from the process (empty when inherited)."""

    stderr: str
    """Standard error captured from the process (empty when inherited)."""

    success: bool
    """True if returncode is 0."""

async def run_subprocess(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture: bool = True,
) -> SubprocessResult:
    """Execute a command in a subprocess and wait for it to finish.

    Args:
        command: Command and arguments as a sequence (e.g. ['grcov', 'coverage_meta']).
        cwd: Working directory for the subprocess. Defaults to current directory.
        env: Complete environment for the child. None inherits the parent's.
        capture: Capture stdout/stderr. When False the child shares the
            terminal, which is required for interactive programs.

    Returns:
        SubprocessResult with exit code and output.

    Raises:
        SubprocessError: If the executable is missing or not executable.
        ValueError: If command is empty or the working directory is missing.
    """
    if not command:
        raise ValueError("Command cannot be empty")

    work_dir = cwd.resolve() if cwd else Path.cwd()
    if not work_dir.exists():
        raise ValueError(f"Working directory does not exist: {work_dir}")

    logger.debug(
        "Running subprocess: %s (cwd=%s, capture=%s)",
        " ".join(str(c) for c in command),
        work_dir,
        capture,
    )

    stream = asyncio.subprocess.PIPE if capture else None

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=stream,
            stderr=stream,
            cwd=work_dir,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        logger.error("Command not found: %s", command[0])
        raise SubprocessError(
            f"Command not found: {command[0]}",
            result=SubprocessResult(
                returncode=-1,
                stdout="",
                stderr=str(exc),
                success=False,
            ),
        ) from exc
    except PermissionError as exc:
        logger.error("Command not executable: %s", command[0])
        raise SubprocessError(
            f"Command not executable: {command[0]}",
            result=SubprocessResult(
                returncode=-1,
                stdout="",
                stderr=str(exc),
                success=False,
            ),
        ) from exc

    stdout_bytes, stderr_bytes = await process.communicate()

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
    returncode = process.returncode if process.returncode is not None else -1

    result = SubprocessResult(
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
        success=returncode == 0,
    )

    logger.debug(
        "Subprocess completed: returncode=%d, success=%s",
        returncode,
        result.success,
    )

    return result


class SubprocessError(Exception):
    """Exception raised when subprocess execution fails."""

    def __init__(self, message: str, result: SubprocessResult) -> None:
        """Initialize with error message and result.

        Args:
            message: Error description.
            result: The SubprocessResult from the failed execution.
        """
        super().__init__(message)
        self.result = result
