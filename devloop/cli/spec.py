"""Spec commands: status transitions, creation and listing."""
from __future__ import annotations

import json
from typing import Optional

import typer
from rich.text import Text

from devloop.cli.common import (
    cli_errors,
    get_config_or_default,
    get_console,
    make_logger,
    make_store,
)
from devloop.cli.display import build_spec_table, format_spec_status
from devloop.errors import InvalidFormatError

app = typer.Typer(
    name="spec",
    help="Manage the specs of an issue",
    no_args_is_help=True,
)

console = get_console()


def _service(config):
    from devloop.spec_status import SpecService

    return SpecService(make_store(config), logger=make_logger(config, "specs"))


@app.command("status")
def spec_status(
    issue: str = typer.Argument(..., help="Issue slug."),
    spec: str = typer.Argument(..., help="Spec name."),
    status: str = typer.Argument(
        ...,
        help="Target status: pending, in-progress, in-review or completed.",
    ),
) -> None:
    """
    Move a spec to another status.

    in-review -> completed needs an APPROVED review and in-review ->
    in-progress needs a NEEDS_WORK review.

    Example:
        devloop spec status audio-capture recorder completed
    """
    with cli_errors():
        config = get_config_or_default()
        record = _service(config).set_status(issue, spec, status)

    line = Text.assemble(("Updated ", "green"), f"{issue}/{spec}: ", format_spec_status(record.status))
    if record.review_round:
        line.append(f" (review round {record.review_round})", style="dim")
    console.print(line)


@app.command("create")
def spec_create(
    issue: str = typer.Argument(..., help="Issue slug."),
    spec: str = typer.Argument(..., help="Spec name (kebab-case)."),
    title: str = typer.Option("", "--title", help="Human-readable title."),
    depends_on: Optional[list[str]] = typer.Option(
        None,
        "--depends-on",
        help="Spec of the same issue this one depends on (repeatable).",
    ),
) -> None:
    """
    Create a pending spec in an issue.

    Example:
        devloop spec create audio-capture recorder --depends-on permissions
    """
    with cli_errors():
        config = get_config_or_default()
        record = _service(config).create(issue, spec, title=title, dependencies=depends_on)

    console.print(Text.assemble(("Created ", "green"), f"{issue}/{record.name} as ", format_spec_status(record.status)))


@app.command("list")
def spec_list(
    issue: str = typer.Argument(..., help="Issue slug."),
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table or json.",
    ),
) -> None:
    """
    List the specs of an issue.

    Example:
        devloop spec list audio-capture
    """
    with cli_errors():
        if output_format not in ("table", "json"):
            raise InvalidFormatError(output_format, ("table", "json"))
        config = get_config_or_default()
        specs = _service(config).list(issue)

    if output_format == "json":
        typer.echo(json.dumps([s.to_summary() for s in specs], indent=2))
        return
    console.print(build_spec_table(issue, specs))
