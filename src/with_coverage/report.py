"""grcov invocation: turn raw profile data into an HTML report."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from with_coverage.errors import ReportGenerationError
from with_coverage.subprocess_runner import SubprocessError, run_subprocess

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from with_coverage.config import CoverageConfig
    from with_coverage.workspace import CoverageWorkspace

logger = logging.getLogger(__name__)


def build_report_command(
    config: CoverageConfig,
    workspace: CoverageWorkspace,
    tool: Path | str | None = None,
) -> list[str]:
    """Return the grcov command line for *workspace*."""
    report = config.report
    command = [
        str(tool or report.tool),
        str(workspace.data_dir),
        "--binary-path",
        _as_dir(workspace.binary_dir),
        "-s",
        _as_dir(workspace.source_dir),
        "-o",
        str(workspace.report_dir),
        "-t",
        report.format,
    ]
    if report.branch:
        command.append("--branch")
    if report.ignore_not_existing:
        command.append("--ignore-not-existing")
    if report.excl_start:
        command.extend(["--excl-start", report.excl_start])
    if report.excl_stop:
        command.extend(["--excl-stop", report.excl_stop])
    command.extend(f"--ignore={pattern}" for pattern in report.ignore)
    return command


def _as_dir(path: Path) -> str:
    # grcov matches these as prefixes; keep the trailing separator.
    text = str(path)
    return text if text.endswith("/") else f"{text}/"


async def generate_report(
    config: CoverageConfig,
    workspace: CoverageWorkspace,
    *,
    tool: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Run grcov and return the report's index page.

    Raises:
        ReportGenerationError: If grcov cannot be started or exits non-zero.
    """
    command = build_report_command(config, workspace, tool)
    try:
        result = await run_subprocess(command, cwd=workspace.base_dir, env=env, capture=False)
    except SubprocessError as exc:
        raise ReportGenerationError(f"Could not run {command[0]}: {exc}") from exc

    if not result.success:
        raise ReportGenerationError(
            f"{config.report.tool} failed with exit code {result.returncode}"
        )

    logger.info("Report written to %s", workspace.report_dir)
    return workspace.index_page
