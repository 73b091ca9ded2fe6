"""Environment handed to instrumented child processes."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from with_coverage.config import CoverageConfig
    from with_coverage.workspace import CoverageWorkspace

RUSTFLAGS = "RUSTFLAGS"
LLVM_PROFILE_FILE = "LLVM_PROFILE_FILE"
RUSTUP_TOOLCHAIN = "RUSTUP_TOOLCHAIN"


def instrumentation_variables(
    config: CoverageConfig, workspace: CoverageWorkspace
) -> dict[str, str]:
    """Return the three variables that switch instrumentation on."""
    return {
        RUSTFLAGS: config.toolchain.rustflags,
        LLVM_PROFILE_FILE: str(workspace.data_dir / config.toolchain.profile_file_pattern),
        RUSTUP_TOOLCHAIN: config.toolchain.toolchain,
    }


def instrumentation_env(
    config: CoverageConfig,
    workspace: CoverageWorkspace,
    base_env: Mapping[str, str],
) -> dict[str, str]:
    """Return a copy of *base_env* with the instrumentation variables set."""
    env = dict(base_env)
    env.update(instrumentation_variables(config, workspace))
    return env
