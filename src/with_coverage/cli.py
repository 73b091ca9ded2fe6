"""with_coverage CLI — run a command under coverage and summarise the report."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import click

from with_coverage import __version__
from with_coverage.config import CoverageConfig, load_valid_config
from with_coverage.errors import UsageFailure, WithCoverageError, WorkspaceError
from with_coverage.orchestrator import CoverageRun, Invocation, check_prerequisites
from with_coverage.terminal import reporter
from with_coverage.workspace import find_project_root

logger = logging.getLogger(__name__)

PROG_NAME = "with_coverage"
LOG_LEVEL_ENV = "WITH_COVERAGE_LOG_LEVEL"

_HELP_FLAGS = frozenset({"-h", "--help"})
_SHORT_FLAGS = frozenset({"h", "i"})

CONTEXT_SETTINGS: dict[str, Any] = {
    "help_option_names": ["-h", "--help"],
    "allow_interspersed_args": False,
}


def _help_requested(args: list[str]) -> bool:
    """Return True if a help flag appears before any unknown flag or the command.

    Flags are read left to right like ``getopts`` does, so ``-i -h`` and
    ``-ih`` ask for help while ``-x -h`` is a usage error.
    """
    for arg in args:
        if arg == "--":
            return False
        if arg in _HELP_FLAGS:
            return True
        if not arg.startswith("-") or arg == "-" or arg.startswith("--"):
            return False
        letters = arg[1:]
        for letter in letters:
            if letter == "h":
                return True
            if letter not in _SHORT_FLAGS:
                return False
    return False


class _CoverageCommand(click.Command):
    """Command whose usage errors exit with status 1."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if _help_requested(args):
            click.echo(ctx.get_help(), color=ctx.color)
            ctx.exit(0)
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


def _configure_logging_from_env() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _locate_project_root(cwd: Path) -> Path:
    """Find the git top-level directory that holds the project's settings.

    Outside a checkout the prerequisite checks still run first, with the
    default settings, so a missing report tool is reported before the git
    failure.
    """
    try:
        return find_project_root(cwd)
    except WorkspaceError:
        asyncio.run(check_prerequisites(CoverageConfig(), cwd=cwd, env=os.environ))
        raise


@click.command(cls=_CoverageCommand, context_settings=CONTEXT_SETTINGS)
@click.option(
    "-i",
    "interactive",
    is_flag=True,
    help="Run an interactive shell after the command (if any).",
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def cli(*, interactive: bool, command: tuple[str, ...]) -> None:
    """Generate coverage using grcov.

    \b
    Usage:
      with_coverage [opts] <command> [args...] : Run <command> with [args].
      with_coverage -i [opts]                  : Run a shell interactively.

    \b
    Notes:
      You need to have grcov, rust-nightly, and llvm-tools-preview installed.
      Settings can be overridden in .with_coverage.yml at the project root.
    """
    invocation = Invocation(interactive=interactive, command=tuple(command))
    if not invocation.has_work:
        raise UsageFailure("No command specified: Use the -i flag if you want a shell.")

    _configure_logging_from_env()
    logger.debug("%s %s: %s", PROG_NAME, __version__, invocation)

    cwd = Path.cwd()
    try:
        root = _locate_project_root(cwd)
        config = load_valid_config(root)
        run = CoverageRun(config, root=root, cwd=cwd, base_env=os.environ)
        result = asyncio.run(run.execute(invocation))
    except WithCoverageError as exc:
        reporter.print_error(str(exc))
        raise SystemExit(1) from exc

    reporter.print_summary(result.entries, result.index_page)


def main() -> None:
    """Console-script entry point."""
    cli(prog_name=PROG_NAME)
