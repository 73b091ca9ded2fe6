"""Configuration parsing from ``.with_coverage.yml``."""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePath, PurePosixPath
from typing import Any

import yaml

from with_coverage.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".with_coverage.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_SUPPORTED_REPORT_FORMATS = frozenset({"html"})


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        logger.warning("Ignoring '%s' section in %s: expected a mapping", name, CONFIG_FILE_NAME)
        return {}
    return value


@dataclass
class ToolchainConfig:
    """Compiler toolchain and instrumentation settings."""

    toolchain: str = "nightly"
    """Toolchain channel pinned through RUSTUP_TOOLCHAIN and probed with ``cargo +<channel>``."""

    rustflags: str = "-Z instrument-coverage"
    """Value exported as RUSTFLAGS to turn instrumentation on."""

    profile_file_pattern: str = "%p-%m.profraw"
    """Raw profile file name; ``%p`` is the process id, ``%m`` the module signature."""

    cargo: str = "cargo"
    """Executable used for the toolchain probe."""


@dataclass
class LayoutConfig:
    """Directory names, relative to the project root."""

    data_dir: str = "coverage_meta"
    """Raw per-process profile data."""

    report_dir: str = "coverage"
    """Generated report output."""

    binary_path: str = "target/debug/"
    """Where the instrumented binaries are built."""

    source_dir: str = "crates/"
    """Source root the report is filtered to."""


@dataclass
class ReportConfig:
    """Report tool settings."""

    tool: str = "grcov"
    """Report generator executable."""

    format: str = "html"
    """Output format passed as ``-t``."""

    branch: bool = True
    """Enable branch coverage."""

    ignore_not_existing: bool = True
    """Skip references to source files that no longer exist."""

    excl_start: str = "^mod test"
    """Regex opening a region excluded from coverage."""

    excl_stop: str = "^}"
    """Regex closing an excluded region."""

    ignore: list[str] = field(default_factory=lambda: ["*/tests/*", "*/examples/*"])
    """Path globs left out of the report."""


@dataclass
class CoverageConfig:
    """Complete with_coverage configuration."""

    toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    shell: str = "bash"
    """Shell launched by ``-i``."""

    raw: dict[str, Any] = field(default_factory=dict)
    """Parsed YAML, after environment expansion."""


def _parse_toolchain(raw: dict[str, Any]) -> ToolchainConfig:
    defaults = ToolchainConfig()
    return ToolchainConfig(
        toolchain=str(raw.get("toolchain", defaults.toolchain)),
        rustflags=str(raw.get("rustflags", defaults.rustflags)),
        profile_file_pattern=str(raw.get("profile_file_pattern", defaults.profile_file_pattern)),
        cargo=str(raw.get("cargo", defaults.cargo)),
    )


def _parse_layout(raw: dict[str, Any]) -> LayoutConfig:
    defaults = LayoutConfig()
    return LayoutConfig(
        data_dir=str(raw.get("data_dir", defaults.data_dir)),
        report_dir=str(raw.get("report_dir", defaults.report_dir)),
        binary_path=str(raw.get("binary_path", defaults.binary_path)),
        source_dir=str(raw.get("source_dir", defaults.source_dir)),
    )


def _parse_report(raw: dict[str, Any]) -> ReportConfig:
    defaults = ReportConfig()
    ignore_raw = raw.get("ignore", defaults.ignore)
    if isinstance(ignore_raw, str):
        ignore = [ignore_raw]
    elif isinstance(ignore_raw, list):
        ignore = [str(item) for item in ignore_raw]
    else:
        ignore = list(defaults.ignore)

    return ReportConfig(
        tool=str(raw.get("tool", defaults.tool)),
        format=str(raw.get("format", defaults.format)),
        branch=bool(raw.get("branch", defaults.branch)),
        ignore_not_existing=bool(raw.get("ignore_not_existing", defaults.ignore_not_existing)),
        excl_start=str(raw.get("excl_start", defaults.excl_start)),
        excl_stop=str(raw.get("excl_stop", defaults.excl_stop)),
        ignore=ignore,
    )


def load_config(root: str | Path) -> CoverageConfig:
    """Load ``.with_coverage.yml`` from *root*.

    Falls back to the built-in defaults when the file is missing or a
    section is absent.

    Raises:
        ConfigError: If the file exists but is not valid YAML.
    """
    config_path = Path(root) / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if config_path.is_file():
        try:
            parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to read {config_path}: {exc}") from exc
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        elif parsed is not None:
            logger.warning("Ignoring %s: top level is not a mapping", config_path)
        logger.debug("Loaded configuration from %s", config_path)

    return CoverageConfig(
        toolchain=_parse_toolchain(_section(raw, "toolchain")),
        layout=_parse_layout(_section(raw, "layout")),
        report=_parse_report(_section(raw, "report")),
        shell=str(raw.get("shell", "bash")),
        raw=raw,
    )


def _layout_parts(value: str) -> tuple[str, ...]:
    """Split a root-relative path into normalized components (``.`` is ``()``)."""
    normalized = posixpath.normpath(PurePath(value).as_posix())
    return PurePosixPath(normalized).parts if normalized != "." else ()


def _is_within(inner: tuple[str, ...], outer: tuple[str, ...]) -> bool:
    return inner[: len(outer)] == outer


def _validate_layout(layout: LayoutConfig) -> list[str]:
    """Check that the removable output directories stay clear of the project.

    ``data_dir`` and ``report_dir`` are deleted at the start of every run, so
    each must be a distinct subdirectory of the root that neither equals nor
    contains the build output or the sources.
    """
    errors: list[str] = []
    outputs: dict[str, tuple[str, ...]] = {}
    for name in ("data_dir", "report_dir"):
        value = getattr(layout, name)
        if not value:
            errors.append(f"layout.{name} must not be empty")
            continue
        if PurePath(value).is_absolute():
            errors.append(f"layout.{name} must be relative to the project root")
            continue
        parts = _layout_parts(value)
        if not parts:
            errors.append(f"layout.{name} must not be the project root")
        elif parts[0] == "..":
            errors.append(f"layout.{name} must stay inside the project root")
        else:
            outputs[name] = parts

    protected = {
        "binary_path": _layout_parts(layout.binary_path),
        "source_dir": _layout_parts(layout.source_dir),
    }
    for name, parts in outputs.items():
        for other, other_parts in protected.items():
            if other_parts and _is_within(other_parts, parts):
                errors.append(f"layout.{name} must not equal or contain layout.{other}")

    data, report = outputs.get("data_dir"), outputs.get("report_dir")
    if data is not None and report is not None:
        if data == report:
            errors.append("layout.data_dir and layout.report_dir must differ")
        elif _is_within(data, report) or _is_within(report, data):
            errors.append("layout.data_dir and layout.report_dir must not be nested")
    return errors


def validate_config(config: CoverageConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.toolchain.toolchain:
        errors.append("toolchain.toolchain must not be empty")
    if "%p" not in config.toolchain.profile_file_pattern:
        errors.append("toolchain.profile_file_pattern must contain %p")

    errors.extend(_validate_layout(config.layout))

    if not config.report.tool:
        errors.append("report.tool must not be empty")
    if config.report.format not in _SUPPORTED_REPORT_FORMATS:
        errors.append(
            f"report.format must be one of {sorted(_SUPPORTED_REPORT_FORMATS)}, "
            f"got {config.report.format!r}"
        )

    if not config.shell:
        errors.append("shell must not be empty")

    return errors


def load_valid_config(root: str | Path) -> CoverageConfig:
    """Load the configuration and raise ``ConfigError`` if it does not validate."""
    config = load_config(root)
    errors = validate_config(config)
    if errors:
        raise ConfigError("Invalid configuration: " + "; ".join(errors), errors)
    return config
