"""
Configuration loading and validation for devloop.

This module handles:
- Loading devloop.yaml from the project root
- Environment variable resolution (${VAR} syntax)
- Validation of field types and target definitions
- Default values for optional fields
- Caching of the loaded configuration
"""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from devloop.models import Stage

CONFIG_FILENAME = "devloop.yaml"


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def _default_thresholds() -> dict[str, float]:
    return {"lines": 100.0, "functions": 100.0}


@dataclass
class TargetConfig:
    """A sub-project whose tests run when files under its paths change."""
    name: str
    paths: list[str] = field(default_factory=list)          # Path prefixes owned by the target
    extensions: list[str] = field(default_factory=list)     # Optional suffix filter (e.g. ".rs")
    command: list[str] = field(default_factory=list)        # Test command without coverage
    coverage_command: list[str] = field(default_factory=list)  # Test command with coverage
    cwd: str = "."                                          # Working directory relative to repo root
    coverage_report: Optional[str] = None                   # JSON summary written by the tool
    thresholds: dict[str, float] = field(default_factory=_default_thresholds)
    timeout_seconds: int = 600

    def command_for(self, with_coverage: bool) -> list[str]:
        """The argv to run, falling back to the plain command."""
        if with_coverage and self.coverage_command:
            return list(self.coverage_command)
        return list(self.command)


def default_targets() -> list[TargetConfig]:
    """Frontend (TypeScript) and backend (Rust) targets."""
    return [
        TargetConfig(
            name="frontend",
            paths=["src/"],
            command=["bun", "run", "test"],
            coverage_command=["bun", "run", "test:coverage"],
            coverage_report="coverage/coverage-summary.json",
        ),
        TargetConfig(
            name="backend",
            paths=["src-tauri/"],
            command=["cargo", "test"],
            coverage_command=["cargo", "llvm-cov", "--json", "--summary-only"],
            cwd="src-tauri",
        ),
    ]


@dataclass
class TCRConfig:
    """Test-Commit-Revert settings."""
    max_failures: int = 5                      # Streak at which the reconsider advisory is raised
    wip_prefix: str = "WIP: "                  # Prefix for work-in-progress commits
    state_file: str = ".tcr-state.json"        # Relative to repo root
    parallel: bool = True                      # Run targets concurrently
    targets: list[TargetConfig] = field(default_factory=default_targets)

    def target(self, name: str) -> TargetConfig:
        for target in self.targets:
            if target.name == name:
                return target
        raise ConfigError(f"Unknown TCR target: {name}")


@dataclass
class TrackerConfig:
    """External issue tracker (Linear) configuration."""
    api_url: str = "https://api.linear.app/graphql"
    api_key_env_var: str = "LINEAR_API_KEY"
    team_id_env_var: str = "LINEAR_TEAM_ID"
    team_id: str = ""                          # Literal team id, overrides the env var
    identifier_prefix: str = "HEY"
    timeout_seconds: int = 30

    def get_api_key(self) -> str:
        return os.environ.get(self.api_key_env_var, "")

    def get_team_id(self) -> str:
        return self.team_id or os.environ.get(self.team_id_env_var, "")


@dataclass
class DevloopConfig:
    """
    Main configuration for devloop.

    This is the top-level config loaded from devloop.yaml.
    """
    repo_root: str = "."
    agile_dir: str = "agile"
    devloop_dir: str = ".devloop"

    tcr: TCRConfig = field(default_factory=TCRConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    def __post_init__(self) -> None:
        """Convert repo_root to an absolute path."""
        self.repo_root = str(Path(self.repo_root).absolute())

    @property
    def stages(self) -> list[Stage]:
        """Canonical stage order."""
        return list(Stage)

    @property
    def agile_path(self) -> Path:
        """Absolute path to the agile records directory."""
        return Path(self.repo_root) / self.agile_dir

    @property
    def issues_path(self) -> Path:
        return self.agile_path / "issues"

    @property
    def devloop_path(self) -> Path:
        return Path(self.repo_root) / self.devloop_dir

    @property
    def logs_path(self) -> Path:
        return self.devloop_path / "logs"

    @property
    def tcr_state_path(self) -> Path:
        return Path(self.repo_root) / self.tcr.state_file


# Module-level cache for the loaded configuration
_config_cache: Optional[DevloopConfig] = None


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve ${VAR} references in strings, recursing into dicts and lists.

    Raises:
        ConfigError: If a referenced variable is not set.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _as_argv(value: Any, field_name: str) -> list[str]:
    """Accept a command either as a list or a shell-style string."""
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(part) for part in value]
    raise ConfigError(f"{field_name} must be a string or a list")


def _as_int(data: dict[str, Any], key: str, default: int, field_name: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{field_name}.{key} must be an integer")
    return value


def _parse_thresholds(data: Any, field_name: str) -> dict[str, float]:
    thresholds = _default_thresholds()
    if data is None:
        return thresholds
    if not isinstance(data, dict):
        raise ConfigError(f"{field_name}.thresholds must be a mapping")
    for metric, value in data.items():
        try:
            pct = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{field_name}.thresholds.{metric} must be a number")
        if not 0 <= pct <= 100:
            raise ConfigError(f"{field_name}.thresholds.{metric} must be between 0 and 100")
        thresholds[str(metric)] = pct
    return thresholds


def _parse_target_config(data: dict[str, Any], index: int) -> TargetConfig:
    """Parse a single TCR target from dict."""
    field_name = f"tcr.targets[{index}]"
    if not isinstance(data, dict):
        raise ConfigError(f"{field_name} must be a mapping")
    if not data.get("name"):
        raise ConfigError(f"{field_name}.name is required")
    command = _as_argv(data.get("command"), f"{field_name}.command")
    coverage_command = _as_argv(data.get("coverage_command"), f"{field_name}.coverage_command")
    if not command and not coverage_command:
        raise ConfigError(f"{field_name} needs a command or coverage_command")
    return TargetConfig(
        name=str(data["name"]),
        paths=[str(p) for p in data.get("paths", [])],
        extensions=[str(e) for e in data.get("extensions", [])],
        command=command or coverage_command,
        coverage_command=coverage_command,
        cwd=str(data.get("cwd", ".")),
        coverage_report=data.get("coverage_report"),
        thresholds=_parse_thresholds(data.get("thresholds"), field_name),
        timeout_seconds=_as_int(data, "timeout_seconds", 600, field_name),
    )


def _parse_tcr_config(data: dict[str, Any]) -> TCRConfig:
    """Parse TCR configuration from dict."""
    max_failures = _as_int(data, "max_failures", 5, "tcr")
    if max_failures < 1:
        raise ConfigError("tcr.max_failures must be at least 1")

    targets_data = data.get("targets")
    if targets_data is None:
        targets = default_targets()
    else:
        if not isinstance(targets_data, list):
            raise ConfigError("tcr.targets must be a list")
        targets = [_parse_target_config(t, i) for i, t in enumerate(targets_data)]
        names = [t.name for t in targets]
        if len(set(names)) != len(names):
            raise ConfigError("tcr.targets names must be unique")

    return TCRConfig(
        max_failures=max_failures,
        wip_prefix=str(data.get("wip_prefix", "WIP: ")),
        state_file=str(data.get("state_file", ".tcr-state.json")),
        parallel=bool(data.get("parallel", True)),
        targets=targets,
    )


def _parse_tracker_config(data: dict[str, Any]) -> TrackerConfig:
    """Parse tracker configuration from dict."""
    return TrackerConfig(
        api_url=data.get("api_url", "https://api.linear.app/graphql"),
        api_key_env_var=data.get("api_key_env_var", "LINEAR_API_KEY"),
        team_id_env_var=data.get("team_id_env_var", "LINEAR_TEAM_ID"),
        team_id=str(data.get("team_id") or ""),
        identifier_prefix=data.get("identifier_prefix", "HEY"),
        timeout_seconds=_as_int(data, "timeout_seconds", 30, "tracker"),
    )


def _parse_stages(data: dict[str, Any]) -> None:
    """The stage list is fixed; configuration may only restate it."""
    stages = data.get("stages")
    if stages is None:
        return
    expected = [s.value for s in Stage]
    if [str(s) for s in stages] != expected:
        raise ConfigError(f"agile.stages must be exactly: {', '.join(expected)}")


def load_config(config_path: Optional[str] = None) -> DevloopConfig:
    """
    Load configuration from devloop.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for devloop.yaml in current directory.

    Returns:
        DevloopConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    if config_path is None:
        config_path = CONFIG_FILENAME

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    data = _resolve_env_vars(raw_data)

    agile_data = data.get("agile") or {}
    _parse_stages(agile_data)

    # A relative repo_root is taken relative to the config file
    repo_root = Path(data.get("repo_root", "."))
    if not repo_root.is_absolute():
        repo_root = path.absolute().parent / repo_root

    return DevloopConfig(
        repo_root=str(repo_root),
        agile_dir=data.get("agile_dir", agile_data.get("dir", "agile")),
        devloop_dir=data.get("devloop_dir", ".devloop"),
        tcr=_parse_tcr_config(data.get("tcr") or {}),
        tracker=_parse_tracker_config(data.get("tracker") or {}),
    )


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> DevloopConfig:
    """
    Get the cached configuration, loading it if necessary.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path)

    return _config_cache


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
