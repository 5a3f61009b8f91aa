"""
CLI utility helpers — output formatting and repository access.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from batchcore.core.errors import BatchError
from batchcore.core.logging import configure_logging
from batchcore.core.settings import get_settings
from batchcore.domain.execution import JobExecution
from batchcore.repository import ExecutionRepository, SqlAlchemyExecutionRepository

DEFAULT_DATABASE_URL = "sqlite:///batch.db"

console = Console()
err_console = Console(stderr=True)


# ── Setup helpers ────────────────────────────────────────────────────────


def setup_logging(level: str | None = None) -> None:
    """Configure structlog for a CLI invocation (logs go to stderr)."""
    settings = get_settings()
    configure_logging(level=level or settings.log_level, json_format=settings.log_json, stream=sys.stderr)


def open_repository(database: str | None = None) -> ExecutionRepository:
    """Open the execution repository.

    Precedence: ``--database``, then ``BATCH_DATABASE_URL``, then
    ``sqlite:///batch.db`` in the working directory. The CLI always uses a
    durable store so ``executions`` commands see earlier runs.
    """
    url = database or get_settings().database_url or DEFAULT_DATABASE_URL
    return SqlAlchemyExecutionRepository.from_url(url)


def fail(error: BatchError | Exception) -> typer.Exit:
    """Print an error and return the Exit to raise."""
    if isinstance(error, BatchError):
        err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    return typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def execution_row(execution: JobExecution) -> dict[str, Any]:
    return {
        "execution_id": execution.execution_id,
        "job": execution.job_name,
        "status": execution.status.value,
        "exit_code": execution.exit_status.exit_code,
        "created_at": execution.created_at.isoformat(timespec="seconds"),
        "parameters": ", ".join(f"{k}={v}" for k, v in execution.parameters.to_display().items()),
    }


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def print_execution(execution: JobExecution, *, as_json: bool = False) -> None:
    """Render one execution with its step executions."""
    if as_json:
        output_json(execution.to_dict())
        return

    style = "green" if execution.status.value == "COMPLETED" else "red"
    print_dict(
        {
            "execution_id": execution.execution_id,
            "job": execution.job_name,
            "status": f"[{style}]{execution.status.value}[/{style}]",
            "exit_code": execution.exit_status.exit_code,
            "exit_description": execution.exit_status.exit_description or "-",
            "parameters": execution.parameters.to_display(),
            "started_at": execution.started_at,
            "ended_at": execution.ended_at,
        },
        title=f"Execution: {execution.execution_id}",
    )
    print_table([s.summary() for s in execution.step_executions], title="Steps")
