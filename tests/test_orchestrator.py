"""Tests for orchestrator.py — phase sequencing of a coverage run."""

from __future__ import annotations

import os
import signal
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from with_coverage.config import CoverageConfig
from with_coverage.errors import MissingToolError, ReportGenerationError
from with_coverage.orchestrator import (
    CoverageRun,
    Invocation,
    PhaseOutcome,
    launch_interactive_shell,
)
from with_coverage.subprocess_runner import SubprocessResult
from with_coverage.summary import SummaryEntry

if TYPE_CHECKING:
    from pathlib import Path

    from conftest import ToolchainStub

_BASE_ENV = {"PATH": "/usr/bin:/bin", "HOME": "/home/dev"}


def _run(root: Path, config: CoverageConfig | None = None) -> CoverageRun:
    return CoverageRun(config or CoverageConfig(), root=root, cwd=root, base_env=_BASE_ENV)


# ── Invocation / PhaseOutcome ─────────────────────────────────────────


class TestInvocation:
    def test_no_work(self) -> None:
        assert Invocation().has_work is False

    def test_command_only(self) -> None:
        assert Invocation(command=("echo", "hello")).has_work is True

    def test_interactive_only(self) -> None:
        assert Invocation(interactive=True).has_work is True


class TestPhaseOutcome:
    def test_success(self) -> None:
        assert PhaseOutcome("Command", 0).success is True

    def test_nonzero(self) -> None:
        assert PhaseOutcome("Command", 3).success is False

    def test_error(self) -> None:
        assert PhaseOutcome("Shell", 0, error="not found").success is False


# ── Interactive shell signal handling ───────────────────────────────


def _previous_sigint_handler(signum: int, frame: object) -> None:
    raise KeyboardInterrupt


class TestShellSigint:
    async def test_previous_handler_restored(self, tmp_path: Path) -> None:
        seen: list[object] = []

        async def fake_run(command: list[str], **kwargs: object) -> SubprocessResult:
            seen.append(signal.getsignal(signal.SIGINT))
            return SubprocessResult(returncode=0, stdout="", stderr="", success=True)

        original = signal.signal(signal.SIGINT, _previous_sigint_handler)
        try:
            with patch("with_coverage.orchestrator.run_subprocess", side_effect=fake_run):
                outcome = await launch_interactive_shell("bash", cwd=tmp_path, env={})
            after = signal.getsignal(signal.SIGINT)
        finally:
            signal.signal(signal.SIGINT, original)

        assert outcome.success
        assert seen and seen[0] is not _previous_sigint_handler
        assert after is _previous_sigint_handler


# ── End-to-end with stubbed tools ─────────────────────────────────────


class TestCoverageRun:
    async def test_echo_hello(self, tmp_path: Path, toolchain: ToolchainStub) -> None:
        stale = tmp_path / "coverage_meta"
        stale.mkdir()
        (stale / "999-old.profraw").write_bytes(b"\x00")
        (tmp_path / "coverage").mkdir()

        result = await _run(tmp_path).execute(Invocation(command=("echo", "hello")))

        assert toolchain.names == ["cargo", "echo", "grcov"]
        (echo,) = toolchain.calls_to("echo")
        assert echo.command == ["echo", "hello"]
        assert echo.capture is False
        assert echo.data_dir_contents == []
        assert echo.report_dir_exists is False
        assert echo.env is not None
        assert echo.env["RUSTFLAGS"] == "-Z instrument-coverage"
        assert echo.env["LLVM_PROFILE_FILE"] == str(tmp_path / "coverage_meta" / "%p-%m.profraw")
        assert echo.env["RUSTUP_TOOLCHAIN"] == "nightly"
        assert echo.env["PATH"] == "/usr/bin:/bin"

        assert result.entries == [
            SummaryEntry("Lines", "72.50%"),
            SummaryEntry("Functions", "85.00%"),
        ]
        assert result.index_page == tmp_path / "coverage" / "index.html"
        assert result.command == PhaseOutcome("Command", 0)
        assert result.shell is None
        assert result.toolchain_ok is True

    async def test_probe_runs_with_base_env(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        await _run(tmp_path).execute(Invocation(command=("true",)))
        (probe,) = toolchain.calls_to("cargo")
        assert probe.command == ["cargo", "+nightly", "-h"]
        assert probe.env == _BASE_ENV

    async def test_grcov_gets_instrumentation_env(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        await _run(tmp_path).execute(Invocation(command=("true",)))
        (grcov,) = toolchain.calls_to("grcov")
        assert grcov.command[0] == "/usr/bin/grcov"
        assert grcov.env is not None
        assert grcov.env["RUSTUP_TOOLCHAIN"] == "nightly"

    async def test_interactive_without_command(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        result = await _run(tmp_path).execute(Invocation(interactive=True))

        assert toolchain.names == ["cargo", "bash", "grcov"]
        (shell,) = toolchain.calls_to("bash")
        assert shell.command == ["bash"]
        assert shell.capture is False
        assert shell.env is not None
        assert shell.env["RUSTFLAGS"] == "-Z instrument-coverage"
        assert result.command is None
        assert result.shell == PhaseOutcome("Shell", 0)

    async def test_command_then_shell(self, tmp_path: Path, toolchain: ToolchainStub) -> None:
        await _run(tmp_path).execute(
            Invocation(interactive=True, command=("cargo", "test", "--all"))
        )
        assert toolchain.names == ["cargo", "cargo", "bash", "grcov"]
        assert toolchain.calls[1].command == ["cargo", "test", "--all"]

    async def test_configured_shell(self, tmp_path: Path, toolchain: ToolchainStub) -> None:
        config = CoverageConfig(shell="/bin/zsh")
        await _run(tmp_path, config).execute(Invocation(interactive=True))
        assert len(toolchain.calls_to("zsh")) == 1

    async def test_failing_command_still_reports(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        toolchain.returncodes["false"] = 1
        result = await _run(tmp_path).execute(Invocation(command=("false",)))
        assert result.command == PhaseOutcome("Command", 1)
        assert len(result.entries) == 2

    async def test_missing_command_still_reports(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        toolchain.missing.add("no-such-binary")
        result = await _run(tmp_path).execute(Invocation(command=("no-such-binary",)))
        assert result.command is not None
        assert result.command.success is False
        assert "not found" in result.command.error
        assert toolchain.names[-1] == "grcov"

    async def test_failing_shell_still_reports(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        toolchain.returncodes["bash"] = 130
        result = await _run(tmp_path).execute(Invocation(interactive=True))
        assert result.shell == PhaseOutcome("Shell", 130)
        assert len(result.entries) == 2

    async def test_toolchain_probe_failure_is_not_fatal(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        toolchain.returncodes["cargo"] = 1
        result = await _run(tmp_path).execute(Invocation(command=("echo", "hello")))
        assert result.toolchain_ok is False
        assert len(result.entries) == 2

    async def test_missing_grcov_stops_before_anything_runs(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        with (
            patch("with_coverage.prerequisites.shutil.which", return_value=None),
            pytest.raises(MissingToolError),
        ):
            await _run(tmp_path).execute(Invocation(command=("echo", "hello")))
        assert toolchain.names == ["cargo"]
        assert not (tmp_path / "coverage_meta").exists()

    async def test_report_failure_is_fatal(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        toolchain.returncodes["grcov"] = 1
        with pytest.raises(ReportGenerationError):
            await _run(tmp_path).execute(Invocation(command=("echo", "hello")))

    async def test_process_environment_untouched(
        self, tmp_path: Path, toolchain: ToolchainStub
    ) -> None:
        before = dict(os.environ)
        await _run(tmp_path).execute(Invocation(command=("echo", "hello")))
        assert dict(os.environ) == before
        assert toolchain.calls_to("echo")[0].env != before
