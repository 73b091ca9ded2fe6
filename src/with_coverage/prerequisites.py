"""Checks that the external coverage toolchain is installed."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from with_coverage.errors import MissingToolError
from with_coverage.subprocess_runner import SubprocessError, run_subprocess

if TYPE_CHECKING:
    from collections.abc import Mapping

    from with_coverage.config import CoverageConfig

logger = logging.getLogger(__name__)

_INSTALL_HINTS = {
    "grcov": "Try 'cargo install grcov'.",
}


async def probe_toolchain(
    config: CoverageConfig,
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> bool:
    """Run ``cargo +<toolchain> -h`` to see whether the toolchain is installed.

    Never raises: a failed probe only produces a diagnostic.

    Returns:
        True if the toolchain answered.
    """
    toolchain = config.toolchain
    command = [toolchain.cargo, f"+{toolchain.toolchain}", "-h"]
    try:
        result = await run_subprocess(command, cwd=cwd, env=env)
    except SubprocessError as exc:
        logger.warning("Toolchain probe failed: %s", exc)
        return False

    if not result.success:
        diagnostic = result.stderr.strip() or f"exit code {result.returncode}"
        logger.warning("Toolchain '%s' is not usable: %s", toolchain.toolchain, diagnostic)
        return False
    return True


def require_report_tool(config: CoverageConfig) -> Path:
    """Return the path of the report tool executable.

    Raises:
        MissingToolError: If it is not on the search path.
    """
    tool = config.report.tool
    found = shutil.which(tool)
    if found:
        return Path(found)

    hint = _INSTALL_HINTS.get(Path(tool).name, "Install it and make sure it is on your PATH.")
    raise MissingToolError(tool, f"{tool} appears not to be installed.  {hint}")
