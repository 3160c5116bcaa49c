"""CLI package for devloop.

Modules:
    app.py      - Main Typer app, version callback, command registration
    issues.py   - Issue commands (list, create, move, resolve)
    spec.py     - Spec commands (status, create, list)
    tcr.py      - TCR commands (check, tcr status, tcr reset)
    display.py  - Rich formatting utilities (format_stage, stage tables)
    common.py   - Shared helpers (get_console, get_config_or_default, cli_errors)

Command Structure:
    devloop list --stage todo
    devloop move audio-capture in-progress
    devloop spec status audio-capture recorder completed
    devloop check "wire recorder"

Usage:
    from devloop.cli import app, cli_main  # Main exports
"""
from devloop.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
