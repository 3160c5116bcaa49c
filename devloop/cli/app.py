"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app, callback, top-level
commands and sub-app registrations are all defined here.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from devloop import __version__
from devloop.cli.common import get_console, set_project_dir

# Create Typer app
app = typer.Typer(
    name="devloop",
    help="Issue lifecycle gates and a Test-Commit-Revert loop for a project",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"devloop version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory to operate on (default: current directory)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    devloop - staged issue workflow with TCR-gated commits.

    Issues move backlog -> todo -> in-progress -> in-review -> done, each
    move checked by validators. `devloop check` only commits when the tests
    and coverage of the changed targets pass.
    """
    set_project_dir(None)
    if project:
        project_path = Path(project)
        if not project_path.is_dir():
            console.print(f"[red]Error: Project directory not found: {escape(project)}[/red]")
            raise typer.Exit(1)
        set_project_dir(str(project_path.absolute()))

    # If no subcommand and no --help, show help
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Top-Level Commands
# =========================================================================

from devloop.cli.issues import create_issue, list_issues, move_issue, resolve_issue  # noqa: E402
from devloop.cli.tcr import check  # noqa: E402

app.command("list")(list_issues)
app.command("create")(create_issue)
app.command("move")(move_issue)
app.command("resolve")(resolve_issue)
app.command("check")(check)

# =========================================================================
# Sub-App Registration
# =========================================================================

from devloop.cli.spec import app as spec_app  # noqa: E402

app.add_typer(spec_app, name="spec")

from devloop.cli.tcr import app as tcr_app  # noqa: E402

app.add_typer(tcr_app, name="tcr")


# =========================================================================
# Entry Point
# =========================================================================


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
