"""
Top-level ``batchcore`` command.

    batchcore run JOB_REF [PARAM ...] [--restart] [--json]
    batchcore executions list|show|stop|abandon ...
"""

from __future__ import annotations

import typer

from batchcore.cli.executions import app as executions_app
from batchcore.cli.run import run_job

app = typer.Typer(
    name="batchcore",
    help="Launch, restart and inspect batch job executions.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _print_version(value: bool) -> None:
    if not value:
        return
    from batchcore import __version__

    typer.echo(f"batchcore {__version__}")
    raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_print_version,
        is_eager=True,
        help="Print the batchcore version and exit.",
    ),
) -> None:
    """Run batch jobs and manage their execution history."""


app.command("run")(run_job)
app.add_typer(executions_app, name="executions", help="List, show, stop and abandon executions.")
