"""Scrape the headline figures out of a grcov HTML index page.

The index page lays out each summary figure as a heading paragraph followed,
a few lines later, by an ``<abbr>`` holding the percentage::

    <p class="heading">Lines</p>
    <abbr title="123 / 170">72.35%</abbr>

Extraction is a two-state machine over lines: ``NoHeadingSeen`` until the
first heading, then ``HeadingSeen(heading)``.  Every percentage line emits a
pair with the current heading.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from with_coverage.errors import ReportGenerationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r'<p class="heading">([^<]*)</p>')
PERCENTAGE_RE = re.compile(r'<abbr title="[0-9]* / [0-9]*">([^<]*)</abbr>')


@dataclass(frozen=True)
class SummaryEntry:
    """One headline figure from the report (e.g. ``Lines 72.35%``)."""

    heading: str
    percentage: str


@dataclass(frozen=True)
class NoHeadingSeen:
    """Initial state: no heading line has been read yet."""


@dataclass(frozen=True)
class HeadingSeen:
    """A heading has been read; percentages are attributed to it."""

    heading: str


ExtractorState = NoHeadingSeen | HeadingSeen


def _current_heading(state: ExtractorState) -> str:
    # An orphan percentage gets an empty heading.
    if isinstance(state, HeadingSeen):
        return state.heading
    return ""


def step(state: ExtractorState, line: str) -> tuple[ExtractorState, SummaryEntry | None]:
    """Advance the extractor by one line.

    Returns:
        The next state and the entry emitted by this line, if any.
    """
    heading = HEADING_RE.search(line)
    if heading:
        return HeadingSeen(heading.group(1)), None

    percentage = PERCENTAGE_RE.search(line)
    if percentage:
        return state, SummaryEntry(_current_heading(state), percentage.group(1))

    return state, None


def extract_summary(lines: Iterable[str]) -> Iterator[SummaryEntry]:
    """Lazily yield ``SummaryEntry`` values from report lines, in order."""
    state: ExtractorState = NoHeadingSeen()
    for line in lines:
        state, entry = step(state, line)
        if entry is not None:
            if isinstance(state, NoHeadingSeen):
                logger.debug("Percentage %s found before any heading", entry.percentage)
            yield entry


def read_summary(index_page: Path) -> Iterator[SummaryEntry]:
    """Yield summary entries from a generated report's index page.

    The file is read as it is consumed, so the iterator is single-use.

    Raises:
        ReportGenerationError: If the index page does not exist.
    """
    if not index_page.is_file():
        raise ReportGenerationError(f"Report index page not found: {index_page}")

    return _iter_file(index_page)


def _iter_file(index_page: Path) -> Iterator[SummaryEntry]:
    with index_page.open(encoding="utf-8", errors="replace") as handle:
        yield from extract_summary(handle)
