"""
CLI: ``batchcore executions`` — execution history and control commands.
"""

from __future__ import annotations

import typer

from batchcore.cli.utils import (
    execution_row,
    fail,
    open_repository,
    output_json,
    print_execution,
    print_table,
    setup_logging,
)
from batchcore.core.errors import BatchError
from batchcore.orchestration.engine import ExecutionEngine

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_executions(
    job: str | None = typer.Option(None, "--job", "-j", help="Only executions of this job"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the most recent executions."""
    setup_logging("WARNING")
    try:
        executions = open_repository(database).list_job_executions(job, limit=limit)
    except BatchError as e:
        raise fail(e) from e

    rows = [execution_row(e) for e in executions]
    if json_out:
        output_json(rows)
    else:
        print_table(rows, title="Executions")


@app.command("show")
def show_execution(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show an execution with its step executions."""
    setup_logging("WARNING")
    try:
        execution = open_repository(database).get_job_execution(execution_id)
    except BatchError as e:
        raise fail(e) from e
    print_execution(execution, as_json=json_out)


@app.command()
def stop(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Request a graceful stop; the running engine stops after the current chunk."""
    setup_logging("WARNING")
    try:
        execution = ExecutionEngine(open_repository(database)).stop(execution_id)
    except BatchError as e:
        raise fail(e) from e
    print_execution(execution, as_json=json_out)


@app.command()
def abandon(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Abandon a FAILED or STOPPED execution so it can never be restarted."""
    setup_logging("WARNING")
    try:
        execution = ExecutionEngine(open_repository(database)).abandon(execution_id)
    except BatchError as e:
        raise fail(e) from e
    print_execution(execution, as_json=json_out)
