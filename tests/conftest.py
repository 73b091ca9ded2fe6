"""Shared fixtures: a recording stand-in for every external tool."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from with_coverage.subprocess_runner import SubprocessError, SubprocessResult

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

STUB_REPORT_HTML = """\
<html>
<body>
<div class="level-item">
    <p class="heading">Lines</p>
    <p class="title"><abbr title="145 / 200">72.50%</abbr></p>
</div>
<div class="level-item">
    <p class="heading">Functions</p>
    <p class="title"><abbr title="17 / 20">85.00%</abbr></p>
</div>
</body>
</html>
"""


@dataclass
class RecordedCall:
    """One child process the run asked for."""

    command: list[str]
    cwd: Path | None
    env: dict[str, str] | None
    capture: bool
    data_dir_contents: list[str] | None
    report_dir_exists: bool

    @property
    def name(self) -> str:
        return Path(self.command[0]).name


@dataclass
class ToolchainStub:
    """Records every ``run_subprocess`` call and fakes cargo, grcov and friends.

    grcov writes ``report_html`` into its ``-o`` directory.  Executables listed
    in ``missing`` raise ``SubprocessError``; ``returncodes`` maps an
    executable name to the exit status it reports.
    """

    root: Path
    report_html: str = STUB_REPORT_HTML
    returncodes: dict[str, int] = field(default_factory=dict)
    missing: set[str] = field(default_factory=set)
    calls: list[RecordedCall] = field(default_factory=list)

    async def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = True,
    ) -> SubprocessResult:
        data_dir = self.root / "coverage_meta"
        call = RecordedCall(
            command=[str(c) for c in command],
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture=capture,
            data_dir_contents=(
                sorted(p.name for p in data_dir.iterdir()) if data_dir.is_dir() else None
            ),
            report_dir_exists=(self.root / "coverage").exists(),
        )
        self.calls.append(call)

        if call.name in self.missing:
            raise SubprocessError(
                f"Command not found: {command[0]}",
                result=SubprocessResult(returncode=-1, stdout="", stderr="", success=False),
            )

        returncode = self.returncodes.get(call.name, 0)
        if call.name == "grcov" and returncode == 0:
            out_dir = Path(call.command[call.command.index("-o") + 1])
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / "index.html").write_text(self.report_html, encoding="utf-8")

        return SubprocessResult(
            returncode=returncode, stdout="", stderr="", success=returncode == 0
        )

    def calls_to(self, name: str) -> list[RecordedCall]:
        """Return the recorded calls of one executable."""
        return [c for c in self.calls if c.name == name]

    @property
    def names(self) -> list[str]:
        """Executables in the order they were run."""
        return [c.name for c in self.calls]


@pytest.fixture()
def toolchain(tmp_path: Path) -> Iterator[ToolchainStub]:
    """Replace every external tool with a ``ToolchainStub`` rooted at *tmp_path*."""
    stub = ToolchainStub(root=tmp_path)
    with ExitStack() as stack:
        for module in ("orchestrator", "prerequisites", "report"):
            stack.enter_context(patch(f"with_coverage.{module}.run_subprocess", new=stub))
        stack.enter_context(
            patch("with_coverage.prerequisites.shutil.which", return_value="/usr/bin/grcov")
        )
        yield stub
