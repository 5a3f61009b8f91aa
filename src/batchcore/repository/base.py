"""Execution repository contract.

The engine consumes the repository as a status store: it saves snapshots of
JobExecution / StepExecution records at every commit point and queries
them on launch to apply restart rules.

Implementations:
    InMemoryExecutionRepository   ── tests, single-process runs
    SqlAlchemyExecutionRepository ── durable (SQLite / PostgreSQL)

Both serialize writes per execution id (``ExecutionLocks``) so concurrent
step threads of one split and concurrent executions never lose updates.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol, runtime_checkable

from batchcore.core.errors import ExecutionStateError
from batchcore.domain.execution import JobExecution, JobInstance, StepExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus


@runtime_checkable
class ExecutionRepository(Protocol):
    """Durable store for job and step execution records."""

    def create_job_instance(self, job_name: str, parameters: ParameterSet) -> JobInstance:
        """Return the instance for (job_name, identifying parameters), creating it if needed."""
        ...

    def save_job_execution(self, job_execution: JobExecution) -> None:
        """Insert or update the job-level fields of an execution."""
        ...

    def save_step_execution(self, step_execution: StepExecution) -> None:
        """Insert or update one step execution (a commit point)."""
        ...

    def get_job_execution(self, execution_id: str) -> JobExecution:
        """Load an execution with its step executions; raises ExecutionNotFoundError."""
        ...

    def get_job_status(self, execution_id: str) -> BatchStatus:
        """Current persisted status (used for cross-process stop requests)."""
        ...

    def update_job_status(self, execution_id: str, status: BatchStatus) -> None:
        """Overwrite the persisted status; a terminal execution never becomes running again."""
        ...

    def find_latest(self, job_name: str, parameters: ParameterSet) -> JobExecution | None:
        """Most recent execution of the instance identified by (job_name, parameters)."""
        ...

    def find_last_instance_execution(self, job_name: str) -> JobExecution | None:
        """Most recent execution of the most recently created instance of ``job_name``.

        Restarting an older instance does not make it the latest instance.
        """
        ...

    def find_step_executions(self, instance_id: str, step_name: str) -> list[StepExecution]:
        """Every execution of ``step_name`` across the instance, oldest first."""
        ...

    def list_job_executions(self, job_name: str | None = None, limit: int = 20) -> list[JobExecution]:
        """Most recent executions first."""
        ...


def merge_status(stored: BatchStatus | None, incoming: BatchStatus) -> BatchStatus:
    """Keep an externally requested STOPPING while the engine still reports STARTED."""
    if stored == BatchStatus.STOPPING and incoming == BatchStatus.STARTED:
        return BatchStatus.STOPPING
    return incoming


def check_status_update(execution_id: str, stored: BatchStatus, incoming: BatchStatus) -> None:
    """Refuse to move a finished execution back to a running status."""
    if stored.is_terminal and incoming.is_running:
        raise ExecutionStateError(
            f"Job execution {execution_id} is already {stored.value}"
        ).with_context(execution_id=execution_id)


class ExecutionLocks:
    """One re-entrant lock per execution id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, execution_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(execution_id, threading.RLock())
        with lock:
            yield
