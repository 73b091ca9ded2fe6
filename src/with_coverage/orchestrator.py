"""Sequences the phases of a coverage run.

Phases run strictly one after another and either return a value or raise a
``WithCoverageError``.  The user's command and the interactive shell are
shielded: their failures are recorded and the run goes on to generate the
report anyway.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from with_coverage.environment import instrumentation_env
from with_coverage.prerequisites import probe_toolchain, require_report_tool
from with_coverage.report import generate_report
from with_coverage.subprocess_runner import SubprocessError, run_subprocess
from with_coverage.summary import SummaryEntry, read_summary
from with_coverage.terminal import reporter
from with_coverage.workspace import CoverageWorkspace, prepare_workspace

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

    from with_coverage.config import CoverageConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invocation:
    """What the user asked for on the command line."""

    interactive: bool = False
    command: tuple[str, ...] = ()

    @property
    def has_work(self) -> bool:
        """Return True when there is a command to run or a shell to open."""
        return bool(self.command) or self.interactive


@dataclass
class PhaseOutcome:
    """Result of a shielded phase (user command or interactive shell)."""

    name: str
    returncode: int
    error: str = ""

    @property
    def success(self) -> bool:
        """Return True if the phase exited cleanly."""
        return self.returncode == 0 and not self.error


@dataclass
class RunResult:
    """Everything a coverage run produced."""

    workspace: CoverageWorkspace
    command: PhaseOutcome | None = None
    shell: PhaseOutcome | None = None
    toolchain_ok: bool = True
    entries: list[SummaryEntry] = field(default_factory=list)

    @property
    def index_page(self) -> Path:
        """Entry page of the generated report."""
        return self.workspace.index_page


async def _run_shielded(
    name: str,
    command: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
) -> PhaseOutcome:
    try:
        result = await run_subprocess(command, cwd=cwd, env=env, capture=False)
    except SubprocessError as exc:
        logger.info("%s could not be started: %s", name, exc)
        reporter.print_warning(f"{name} could not be started: {exc}")
        return PhaseOutcome(name=name, returncode=exc.result.returncode, error=str(exc))

    if not result.success:
        logger.info("%s exited with status %d", name, result.returncode)
        reporter.print_warning(
            f"{name} exited with status {result.returncode}; generating the report anyway."
        )
    return PhaseOutcome(name=name, returncode=result.returncode)


async def run_user_command(
    command: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
) -> PhaseOutcome:
    """Run the instrumented workload; failures do not stop the run."""
    return await _run_shielded("Command", command, cwd=cwd, env=env)


def _ignore_sigint() -> None:
    logger.debug("Ignoring SIGINT while the interactive shell runs")


@contextlib.contextmanager
def _sigint_left_to_child() -> Iterator[None]:
    """Keep Ctrl-C inside the shell from aborting the run.

    A loop-level handler (not SIG_IGN) is used so the child still gets the
    default disposition after exec.  The handler in place beforehand (for
    example the one ``asyncio.run`` installs) is restored afterwards.
    """
    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, _ignore_sigint)
    except (NotImplementedError, RuntimeError, ValueError):
        installed = False
    else:
        installed = True
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
            if previous is not None:
                signal.signal(signal.SIGINT, previous)


async def launch_interactive_shell(
    shell: str,
    *,
    cwd: Path,
    env: Mapping[str, str],
) -> PhaseOutcome:
    """Open an interactive shell; failures do not stop the run."""
    reporter.print_info(f"Launching a {Path(shell).name} shell.")
    reporter.print_info("Exit this shell when you are ready to generate a coverage report.")
    with _sigint_left_to_child():
        return await _run_shielded("Shell", [shell], cwd=cwd, env=env)


async def check_prerequisites(
    config: CoverageConfig,
    *,
    cwd: Path,
    env: Mapping[str, str],
) -> tuple[bool, Path]:
    """Probe the toolchain (warning only) and locate the report tool.

    Returns:
        Whether the toolchain responded, and the report tool's path.

    Raises:
        MissingToolError: If the report tool is not installed.
    """
    toolchain_ok = await probe_toolchain(config, cwd=cwd, env=env)
    if not toolchain_ok:
        reporter.print_warning(
            f"Toolchain '{config.toolchain.toolchain}' did not respond; "
            "instrumented builds may fail."
        )
    return toolchain_ok, require_report_tool(config)


class CoverageRun:
    """One coverage run against a project root.

    All process state the run depends on (environment, working directory,
    project root) is passed in explicitly.  The environment is only handed
    to child processes, never written back to ``os.environ``.
    """

    def __init__(
        self,
        config: CoverageConfig,
        *,
        root: Path,
        cwd: Path,
        base_env: Mapping[str, str],
    ) -> None:
        self.config = config
        self.cwd = cwd
        self.base_env = dict(base_env)
        self.workspace = CoverageWorkspace.from_root(root, config)

    async def execute(self, invocation: Invocation) -> RunResult:
        """Run every phase in order and return the collected summary.

        Raises:
            MissingToolError: If the report tool is not installed.
            WorkspaceError: If the raw-data directory cannot be created.
            ReportGenerationError: If report generation fails.
        """
        result = RunResult(workspace=self.workspace)

        result.toolchain_ok, tool = await check_prerequisites(
            self.config, cwd=self.cwd, env=self.base_env
        )

        prepare_workspace(self.workspace)
        env = instrumentation_env(self.config, self.workspace, self.base_env)

        if invocation.command:
            result.command = await run_user_command(invocation.command, cwd=self.cwd, env=env)

        if invocation.interactive:
            result.shell = await launch_interactive_shell(self.config.shell, cwd=self.cwd, env=env)

        reporter.print_info("Generating report...")
        index_page = await generate_report(self.config, self.workspace, tool=tool, env=env)

        result.entries = list(read_summary(index_page))
        return result
