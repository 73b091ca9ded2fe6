"""Project root discovery and coverage workspace preparation."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from with_coverage.errors import WorkspaceError

if TYPE_CHECKING:
    from with_coverage.config import CoverageConfig

logger = logging.getLogger(__name__)

INDEX_PAGE_NAME = "index.html"


def _git_executable() -> str:
    """Resolve the full path to the ``git`` executable."""
    return shutil.which("git") or "git"


def find_project_root(cwd: Path) -> Path:
    """Return the top-level directory of the git checkout containing *cwd*.

    Raises:
        WorkspaceError: If git is unavailable or *cwd* is not inside a checkout.
    """
    try:
        result = subprocess.run(
            [_git_executable(), "rev-parse", "--show-toplevel"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise WorkspaceError("git not found: it is needed to locate the project root") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or str(exc)
        raise WorkspaceError(f"Failed to locate the project root: {detail}") from exc

    root = result.stdout.strip()
    if not root:
        raise WorkspaceError("git returned an empty project root")
    return Path(root)


@dataclass(frozen=True)
class CoverageWorkspace:
    """Directories a coverage run reads from and writes to."""

    base_dir: Path
    """Project root."""

    data_dir: Path
    """Raw per-process profile data; recreated every run."""

    report_dir: Path
    """Generated report; removed every run and rewritten by the report tool."""

    binary_dir: Path
    """Instrumented build output."""

    source_dir: Path
    """Source tree the report covers."""

    @classmethod
    def from_root(cls, root: Path, config: CoverageConfig) -> CoverageWorkspace:
        layout = config.layout
        return cls(
            base_dir=root,
            data_dir=root / layout.data_dir,
            report_dir=root / layout.report_dir,
            binary_dir=root / layout.binary_path,
            source_dir=root / layout.source_dir,
        )

    @property
    def index_page(self) -> Path:
        """Entry page of the HTML report."""
        return self.report_dir / INDEX_PAGE_NAME


def _remove_tree(path: Path) -> None:
    try:
        if path.is_symlink():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        else:
            return
        logger.debug("Removed %s", path)
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)


def _check_removable(path: Path, base_dir: Path) -> None:
    location = path.parent.resolve() / path.name if path.is_symlink() else path.resolve()
    root = base_dir.resolve()
    if root.is_relative_to(location) or not location.is_relative_to(root):
        raise WorkspaceError(f"Refusing to remove {path}: it is not below {base_dir}")


def prepare_workspace(workspace: CoverageWorkspace) -> None:
    """Clear old coverage output and create an empty raw-data directory.

    Removal failures are logged and ignored.  A symlinked directory is
    replaced by a real one; the link target is left alone.

    Raises:
        WorkspaceError: If either directory is not strictly below the project
            root, or the raw-data directory cannot be created.
    """
    for path in (workspace.report_dir, workspace.data_dir):
        _check_removable(path, workspace.base_dir)
    _remove_tree(workspace.report_dir)
    _remove_tree(workspace.data_dir)

    try:
        workspace.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkspaceError(f"Could not create {workspace.data_dir}: {exc}") from exc
    logger.info("Prepared coverage workspace at %s", workspace.base_dir)
