"""Common utilities and global state for the CLI.

Contains project directory management, config loading, service factories and
error reporting. This module should NOT import from the command modules to
avoid circular imports.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape

from devloop.errors import DevloopError

if TYPE_CHECKING:
    from devloop.config import DevloopConfig
    from devloop.logger import DevloopLogger
    from devloop.metadata import MetadataStore

# ============================================================================
# Global State
# ============================================================================

# Global project directory override (set via --project flag)
_project_dir: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_project_dir() -> Optional[str]:
    """Get the project directory override if set."""
    return _project_dir


def set_project_dir(path: Optional[str]) -> None:
    """Set the project directory override."""
    global _project_dir
    _project_dir = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


# ============================================================================
# Config Helpers
# ============================================================================


def load_config_safe() -> Optional["DevloopConfig"]:
    """
    Load devloop.yaml from the project directory, or None if there is none.

    A config file that exists but is invalid still raises ConfigError.
    """
    from devloop.config import CONFIG_FILENAME, load_config

    project_dir = Path(get_project_dir() or Path.cwd())
    config_path = project_dir / CONFIG_FILENAME
    if not config_path.is_file():
        return None
    return load_config(str(config_path))


def get_config_or_default() -> "DevloopConfig":
    """Get config or fall back to defaults rooted at the project directory."""
    from devloop.config import DevloopConfig

    config = load_config_safe()
    if config is not None:
        return config
    return DevloopConfig(repo_root=get_project_dir() or str(Path.cwd()))


def make_logger(config: "DevloopConfig", component: str) -> "DevloopLogger":
    from devloop.logger import DevloopLogger

    return DevloopLogger(component, config)


def make_store(config: "DevloopConfig") -> "MetadataStore":
    from devloop.metadata import MetadataStore

    return MetadataStore(config)


# ============================================================================
# Error Reporting
# ============================================================================


def print_error(error: Exception) -> None:
    """Print an error and every reason attached to it, one per line."""
    console = get_console()
    console.print(f"[red]Error:[/red] {escape(str(error))}", soft_wrap=True)
    reasons = error.reasons if isinstance(error, DevloopError) else []
    for reason in reasons:
        console.print(f"  - {escape(reason)}", soft_wrap=True)


@contextmanager
def cli_errors() -> Iterator[None]:
    """
    Map devloop and config errors to exit code 1.

    Example:
        with cli_errors():
            engine.move(name, stage)
    """
    from devloop.config import ConfigError

    try:
        yield
    except (DevloopError, ConfigError) as e:
        print_error(e)
        raise typer.Exit(1)
