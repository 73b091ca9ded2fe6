"""Exception taxonomy for with_coverage."""

from __future__ import annotations

import click


class WithCoverageError(Exception):
    """Base class for fatal errors raised by a coverage run phase."""


class ConfigError(WithCoverageError):
    """Raised when ``.with_coverage.yml`` is unreadable or invalid."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class MissingToolError(WithCoverageError):
    """Raised when a required external executable is not on the search path."""

    def __init__(self, tool: str, hint: str) -> None:
        """Initialize with the tool name and a remediation hint.

        Args:
            tool: Executable that could not be found.
            hint: User-facing message explaining how to install it.
        """
        super().__init__(hint)
        self.tool = tool
        self.hint = hint


class WorkspaceError(WithCoverageError):
    """Raised when the project root cannot be located or prepared."""


class ReportGenerationError(WithCoverageError):
    """Raised when the report tool fails or its output is missing."""


class UsageFailure(click.UsageError):
    """Command-line usage error that exits with status 1."""

    exit_code = 1
