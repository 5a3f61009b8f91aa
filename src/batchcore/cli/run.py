"""
CLI: ``batchcore run`` — launch or restart a job.
"""

from __future__ import annotations

import typer

from batchcore.cli.utils import console, fail, open_repository, output_json, print_table, setup_logging
from batchcore.core.errors import BatchError
from batchcore.orchestration.engine import ExecutionEngine
from batchcore.orchestration.events import LoggingEventListener
from batchcore.orchestration.launcher import JobLauncher
from batchcore.orchestration.registry import load_job


def run_job(
    job_ref: str = typer.Argument(..., help="Job reference: 'package.module:attr' or a registered name"),
    params: list[str] = typer.Option(
        [], "--param", "-p", help="Job parameter as name(type)=value; prefix '-' for non-identifying"
    ),
    restart: bool = typer.Option(False, "--restart", help="Restart the last FAILED/STOPPED execution"),
    database: str | None = typer.Option(None, "--database", "-d"),
    log_level: str | None = typer.Option(None, "--log-level"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a job to completion and print its summary."""
    setup_logging(log_level)
    try:
        definition = load_job(job_ref)
        engine = ExecutionEngine(open_repository(database), listeners=[LoggingEventListener()])
        summary = JobLauncher(engine).launch_definition(definition, params, restart=restart)
    except (BatchError, ImportError, AttributeError, TypeError, ValueError) as e:
        raise fail(e) from e

    if json_out:
        output_json(summary.to_dict())
    else:
        style = "green" if summary.succeeded else "red"
        console.print(f"Execution {summary.execution_id}")
        console.print(
            f"[bold]{summary.job_name}[/bold]: [{style}]{summary.status.value}[/{style}] ({summary.exit_code})"
        )
        if summary.exit_description:
            console.print(f"[dim]{summary.exit_description}[/dim]")
        print_table(summary.step_summaries, title="Steps")

    if not summary.succeeded:
        raise typer.Exit(code=1)
