"""Issue lifecycle commands: list, create, move and resolve.

These are registered as top-level commands on the main app.
"""
from __future__ import annotations

import json
from typing import Optional

import typer
from rich.markup import escape
from rich.text import Text

from devloop.cli.common import (
    cli_errors,
    get_config_or_default,
    get_console,
    make_logger,
    make_store,
)
from devloop.cli.display import build_stage_tables, format_stage
from devloop.errors import InvalidFormatError

console = get_console()

OUTPUT_FORMATS = ("table", "json")


def _engine(config):
    from devloop.stages import StageTransitionEngine

    return StageTransitionEngine(make_store(config), logger=make_logger(config, "stages"))


def list_issues(
    stage: Optional[str] = typer.Option(
        None,
        "--stage",
        "-s",
        help="Only list issues in this stage.",
    ),
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table or json.",
    ),
) -> None:
    """
    List issues grouped by stage.

    Example:
        devloop list --stage todo --format json
    """
    with cli_errors():
        if output_format not in OUTPUT_FORMATS:
            raise InvalidFormatError(output_format, OUTPUT_FORMATS)
        config = get_config_or_default()
        listing = _engine(config).list(stage)

    if output_format == "json":
        typer.echo(json.dumps(listing.to_summaries(), indent=2))
        return

    for table in build_stage_tables(listing):
        console.print(table)
        console.print()


def create_issue(
    name: str = typer.Argument(..., help="Issue slug (kebab-case)."),
    issue_type: str = typer.Option(
        "feature",
        "--type",
        "-t",
        help="Issue type: feature, bug or task.",
    ),
    title: str = typer.Option("", "--title", help="Human-readable title."),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Issue owner."),
    description: str = typer.Option("", "--description", "-d", help="Initial description."),
) -> None:
    """
    Create an issue in the backlog from the issue template.

    Example:
        devloop create audio-capture --type feature --title "Audio capture"
    """
    with cli_errors():
        config = get_config_or_default()
        issue = _engine(config).create(
            name,
            issue_type=issue_type,
            title=title,
            owner=owner,
            description=description,
        )

    console.print(Text.assemble(
        ("Created ", "green"),
        f"{issue.name} ({issue.type.value}) in ",
        format_stage(issue.stage),
    ))


def move_issue(
    name: str = typer.Argument(..., help="Issue slug."),
    stage: str = typer.Argument(..., help="Target stage."),
) -> None:
    """
    Move an issue to another stage.

    Every blocking validation reason is printed when the move is rejected.

    Example:
        devloop move audio-capture todo
    """
    with cli_errors():
        config = get_config_or_default()
        result = _engine(config).move(name, stage)

    if not result.changed:
        console.print(Text.assemble(f"{name} is already in ", format_stage(result.issue.stage)))
        return
    console.print(Text.assemble(
        ("Moved ", "green"),
        f"{name}: ",
        format_stage(result.previous),
        " -> ",
        format_stage(result.issue.stage),
    ))


def resolve_issue(
    slug: str = typer.Argument(..., help="Issue slug or tracker identifier (e.g. HEY-123)."),
) -> None:
    """
    Resolve a slug to its identifier in the external issue tracker.

    Example:
        devloop resolve audio-capture
    """
    from devloop.tracker import LinearTracker

    with cli_errors():
        config = get_config_or_default()
        tracker = LinearTracker(config.tracker, logger=make_logger(config, "tracker"))
        identifier = tracker.resolve_remote_id(slug)

    if identifier is None:
        console.print(f"[red]Error:[/red] No tracker issue found for {escape(slug)}")
        raise typer.Exit(1)
    typer.echo(identifier)
