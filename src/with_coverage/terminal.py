"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from with_coverage.summary import SummaryEntry

console = Console()
err_console = Console(stderr=True)


class CLIReporter:
    """Rich terminal output reporter for a coverage run."""

    def __init__(self) -> None:
        """Initialize the CLI reporter."""
        self.console = console
        self.err_console = err_console

    def print_error(self, message: str) -> None:
        """Print an error message to stderr."""
        self.err_console.print(f"[red]✗[/red] {escape(message)}", highlight=False)

    def print_warning(self, message: str) -> None:
        """Print a warning message to stderr."""
        self.err_console.print(f"[yellow]⚠[/yellow] {escape(message)}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(escape(message), highlight=False)

    def print_plain(self, message: str) -> None:
        """Print a line verbatim: no markup, highlighting or wrapping."""
        self.console.print(message, markup=False, highlight=False, soft_wrap=True)

    def print_summary(self, entries: Iterable[SummaryEntry], index_page: Path) -> int:
        """Print one ``<heading> <percentage>`` line per entry, then the report path.

        Returns:
            The number of entries printed.
        """
        count = 0
        for entry in entries:
            self.print_plain(f"{entry.heading} {entry.percentage}")
            count += 1
        self.print_plain(f"Full report: {index_page}")
        return count


reporter = CLIReporter()
