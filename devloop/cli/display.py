"""Display helpers and formatters for the CLI.

Contains Rich formatting utilities for stages, spec statuses and TCR state.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from rich.table import Table
from rich.text import Text

from devloop.models import RunOutcome, SpecStatus, Stage, TCRRunState

if TYPE_CHECKING:
    from devloop.models import SpecRecord
    from devloop.stages import StageListing

# Stage display names and colors
STAGE_DISPLAY: dict[Stage, tuple[str, str]] = {
    Stage.BACKLOG: ("Backlog", "dim"),
    Stage.TODO: ("Todo", "blue"),
    Stage.IN_PROGRESS: ("In Progress", "cyan bold"),
    Stage.IN_REVIEW: ("In Review", "yellow"),
    Stage.DONE: ("Done", "green"),
}

# Spec status display names and colors
SPEC_STATUS_DISPLAY: dict[SpecStatus, tuple[str, str]] = {
    SpecStatus.PENDING: ("Pending", "dim"),
    SpecStatus.IN_PROGRESS: ("In Progress", "cyan"),
    SpecStatus.IN_REVIEW: ("In Review", "yellow bold"),
    SpecStatus.COMPLETED: ("Completed", "green bold"),
}


def format_stage(stage: Stage) -> Text:
    """Format a stage enum as colored text."""
    display_name, style = STAGE_DISPLAY.get(stage, (stage.value, "white"))
    return Text(display_name, style=style)


def format_spec_status(status: SpecStatus) -> Text:
    """Format a spec status enum as colored text."""
    display_name, style = SPEC_STATUS_DISPLAY.get(status, (status.value, "white"))
    return Text(display_name, style=style)


def build_stage_tables(listing: StageListing) -> list[Table]:
    """One table per stage, titled with the stage name and its issue count."""
    tables = []
    for stage, issues in listing.sections:
        display_name, style = STAGE_DISPLAY.get(stage, (stage.value, "white"))
        table = Table(
            title=f"[{style}]{display_name}[/{style}] ({len(issues)})",
            title_justify="left",
            show_edge=False,
        )
        table.add_column("Issue", style="cyan")
        table.add_column("Type")
        table.add_column("Title")
        table.add_column("Owner", style="dim")
        table.add_column("Created", style="dim")
        for issue in issues:
            table.add_row(
                Text(issue.name),
                issue.type.value,
                Text(issue.title),
                Text(issue.owner or "-"),
                issue.created or "-",
            )
        tables.append(table)
    return tables


def build_spec_table(issue: str, specs: list[SpecRecord]) -> Table:
    table = Table(title=f"Specs for {issue} ({len(specs)})", title_justify="left")
    table.add_column("Spec", style="cyan")
    table.add_column("Status")
    table.add_column("Round", justify="right")
    table.add_column("Depends On", style="dim")
    table.add_column("Completed", style="dim")
    for spec in specs:
        table.add_row(
            Text(spec.name),
            format_spec_status(spec.status),
            str(spec.review_round),
            Text(", ".join(spec.dependencies) or "-"),
            spec.completed or "-",
        )
    return table


def build_tcr_state_table(state: TCRRunState, max_failures: int) -> Table:
    """Key/value view of the persisted TCR run state."""
    table = Table(show_header=False, show_edge=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    if state.last_outcome is None:
        outcome = Text("never run", style="dim")
    elif state.last_outcome == RunOutcome.PASS:
        outcome = Text("pass", style="green")
    else:
        outcome = Text("fail", style="red bold")

    streak_style = "red bold" if state.failure_streak >= max_failures else "white"
    table.add_row("Last outcome", outcome)
    table.add_row("Failure streak", Text(f"{state.failure_streak}/{max_failures}", style=streak_style))
    table.add_row("Last step", Text(state.last_step_name or "-"))
    table.add_row("Updated", state.updated_at or "-")
    table.add_row("Saved output", "yes" if state.last_full_output else "no")
    return table
