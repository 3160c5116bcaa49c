"""TCR commands: the check itself plus state inspection and reset.

``check`` is registered as a top-level command; ``status`` and ``reset`` live
under the ``tcr`` sub-app.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer
from rich.markup import escape

from devloop.cli.common import cli_errors, get_config_or_default, get_console, make_logger
from devloop.cli.display import build_tcr_state_table

app = typer.Typer(
    name="tcr",
    help="Inspect and reset the TCR run state",
    no_args_is_help=True,
)

console = get_console()


def check(
    step_name: Optional[str] = typer.Argument(
        None,
        help="Name of the step being checked; used in the commit message.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Print the full test runner output.",
    ),
) -> None:
    """
    Run tests for changed targets and commit when they pass.

    Exits 0 on pass (or when nothing changed), 2 when tests or coverage
    fail, and 1 on usage, git or state errors.

    Example:
        devloop check "add recorder state machine"
    """
    from devloop.tcr.check import CheckStatus, build_check_runner

    with cli_errors():
        config = get_config_or_default()
        logger = make_logger(config, "tcr")
        run_id = f"check-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}"
        with logger.run_context(run_id):
            result = build_check_runner(config, logger=logger).run(step_name)

    style = {
        CheckStatus.NOOP: "dim",
        CheckStatus.PASS: "green",
        CheckStatus.FAIL: "red",
    }[result.status]
    lines = result.format(verbose=verbose)
    console.print(f"[{style}]{escape(lines[0])}[/{style}]", soft_wrap=True)
    for line in lines[1:]:
        if "reconsider your approach" in line:
            console.print(f"[yellow bold]{escape(line)}[/yellow bold]", soft_wrap=True)
        else:
            console.print(escape(line), soft_wrap=True, highlight=False)

    raise typer.Exit(result.exit_code)


@app.command("status")
def tcr_status() -> None:
    """
    Show the persisted TCR run state.

    Example:
        devloop tcr status
    """
    from devloop.tcr.state import FailureStatePersistence

    with cli_errors():
        config = get_config_or_default()
        state = FailureStatePersistence(config.tcr_state_path).load()

    console.print(build_tcr_state_table(state, config.tcr.max_failures))


@app.command("reset")
def tcr_reset() -> None:
    """
    Zero the failure streak and drop the saved failure output.

    Example:
        devloop tcr reset
    """
    from devloop.tcr.state import FailureStatePersistence

    with cli_errors():
        config = get_config_or_default()
        store = FailureStatePersistence(config.tcr_state_path, logger=make_logger(config, "tcr"))
        store.reset()

    console.print("[green]TCR failure streak reset[/green]")
