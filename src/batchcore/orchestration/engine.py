"""Execution Engine — launches, restarts and stops job executions.

Manifesto:
A job run must be repeatable and resumable without the caller keeping any
state. The engine answers every launch from the repository alone: it finds
the latest execution of (job, identifying parameters), applies the restart
rules, then walks the job's steps committing progress as it goes.

ARCHITECTURE
────────────
::

    ExecutionEngine.run(job, parameters, restart=False)
      │
      ├── _prepare()      ── incrementer, duplicate / running / restart rules
      │                      → new JobExecution (same instance on restart)
      ├── _execute()      ── STARTING → STARTED → walk steps → terminal
      │     └── _run_unit()
      │           ├── tasklet / chunk  → StepRunner (commit points)
      │           └── split            → ThreadPoolExecutor, one flow per worker
      └── returns the terminal JobExecution

    Launch rules for the latest execution of the instance:
      none                       → new instance + execution
      COMPLETED / ABANDONED      → DuplicateExecutionError
      STARTING/STARTED/STOPPING  → JobExecutionAlreadyRunningError
      FAILED / STOPPED           → DuplicateExecutionError unless restart=True
                                   restart=True → RestartabilityError when the
                                   job is not restartable or its layout changed

    Stop requests (``stop()`` or STOPPING written by another process) are
    observed between chunks and tasklet iterations; the step and the job
    finish STOPPED with committed progress preserved.

Example::

    engine = ExecutionEngine(InMemoryExecutionRepository(), listeners=[LoggingEventListener()])
    execution = engine.run(simple_job, {"requestDate": "2024-01-02"})
    assert execution.status == BatchStatus.COMPLETED

Tags:
    batch-core, orchestration, engine, restart, split, stop

Doc-Types:
    api-reference
"""

from __future__ import annotations

import contextvars
import threading
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from typing import Any

from batchcore.core.errors import ExecutionStateError, categorize_error
from batchcore.core.logging import LogContext, get_logger
from batchcore.core.settings import BatchSettings, get_settings
from batchcore.domain.execution import JobExecution, StepExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus, ExitStatus
from batchcore.orchestration.events import EventEmitter, EventListener, EventType, JobEvent
from batchcore.orchestration.exceptions import (
    DuplicateExecutionError,
    JobExecutionAlreadyRunningError,
    RestartabilityError,
    StartLimitExceededError,
    StepExecutionError,
)
from batchcore.orchestration.job import END, FAIL, STOP, JobDefinition
from batchcore.orchestration.step_context import StepContext
from batchcore.orchestration.step_runner import StepRunner
from batchcore.orchestration.step_types import Step, StepType
from batchcore.repository import ExecutionRepository, create_repository

logger = get_logger(__name__)


class ExecutionEngine:
    """Runs job definitions against an execution repository."""

    def __init__(
        self,
        repository: ExecutionRepository | None = None,
        *,
        listeners: Iterable[EventListener] = (),
        settings: BatchSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository if repository is not None else create_repository(self._settings)
        self._emitter = EventEmitter(listeners)
        self._runner = StepRunner(self._repository, self._emitter, self._settings.default_chunk_size)
        self._launch_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._stop_requests: set[str] = set()

    @property
    def repository(self) -> ExecutionRepository:
        return self._repository

    def subscribe(self, listener: EventListener) -> None:
        self._emitter.subscribe(listener)

    # =========================================================================
    # Public API
    # =========================================================================

    def run(
        self,
        job: JobDefinition,
        parameters: ParameterSet | Mapping[str, Any] | None = None,
        *,
        restart: bool = False,
    ) -> JobExecution:
        """Run ``job`` to a terminal status and return its JobExecution.

        Step failures are recorded on the returned execution and never
        raised. Launch-policy errors are raised before anything runs.

        Raises:
            DuplicateExecutionError: The instance already completed, or it
                failed/stopped and ``restart`` was not requested.
            JobExecutionAlreadyRunningError: The instance is running.
            RestartabilityError: Restart of a non-restartable or changed job.
        """
        if not isinstance(parameters, ParameterSet):
            parameters = ParameterSet.from_mapping(parameters)

        execution = self._prepare(job, parameters, restart)
        with LogContext(job=job.name, execution_id=execution.execution_id):
            try:
                self._execute(job, execution)
            finally:
                with self._stop_lock:
                    self._stop_requests.discard(execution.execution_id)
        return execution

    def stop(self, execution_id: str) -> JobExecution:
        """Request a graceful stop of a running execution.

        Raises:
            ExecutionNotFoundError: Unknown id.
            ExecutionStateError: The execution already finished.
        """
        execution = self._repository.get_job_execution(execution_id)
        if not execution.status.is_running:
            raise ExecutionStateError(
                f"Job execution {execution_id} is not running (status={execution.status.value})"
            ).with_context(job=execution.job_name, execution_id=execution_id)

        self._repository.update_job_status(execution_id, BatchStatus.STOPPING)
        with self._stop_lock:
            self._stop_requests.add(execution_id)
        logger.info("job.stop_requested", job=execution.job_name, execution_id=execution_id)
        return self._repository.get_job_execution(execution_id)

    def abandon(self, execution_id: str) -> JobExecution:
        """Mark a FAILED or STOPPED execution ABANDONED so it is never restarted."""
        execution = self._repository.get_job_execution(execution_id)
        execution.abandon()
        self._repository.save_job_execution(execution)
        logger.info("job.abandoned", job=execution.job_name, execution_id=execution_id)
        self._emit_job(execution)
        return execution

    # =========================================================================
    # Launch rules
    # =========================================================================

    def _prepare(self, job: JobDefinition, parameters: ParameterSet, restart: bool) -> JobExecution:
        with self._launch_lock:
            parameters = self._apply_incrementer(job, parameters, restart)
            latest = self._repository.find_latest(job.name, parameters)

            if latest is None:
                instance = self._repository.create_job_instance(job.name, parameters)
            else:
                self._check_relaunch(job, latest, restart)
                instance = latest.instance
                logger.info(
                    "job.restart",
                    job=job.name,
                    previous_execution_id=latest.execution_id,
                    previous_status=latest.status.value,
                )

            execution = JobExecution(
                instance=instance,
                parameters=parameters,
                definition_signature=job.signature,
            )
            self._repository.save_job_execution(execution)

        self._emit_job(execution)
        return execution

    def _apply_incrementer(self, job: JobDefinition, parameters: ParameterSet, restart: bool) -> ParameterSet:
        incrementer = job.incrementer
        if incrementer is None:
            return parameters

        # the newest instance, even when an older one was restarted since
        previous = self._repository.find_last_instance_execution(job.name)
        if not restart:
            return incrementer.next(parameters, previous.parameters if previous else None)
        if incrementer.key not in parameters and previous is not None:
            # restarting without a run id targets the most recent instance
            run_id = previous.parameters.parameter(incrementer.key)
            if run_id is not None:
                return parameters.merge(ParameterSet({incrementer.key: run_id}))
        return parameters

    def _check_relaunch(self, job: JobDefinition, latest: JobExecution, restart: bool) -> None:
        status = latest.status
        if status.is_running:
            raise JobExecutionAlreadyRunningError(job.name, latest.execution_id)
        if status == BatchStatus.COMPLETED:
            raise DuplicateExecutionError(
                job.name, latest.execution_id, "a completed execution already exists for these parameters"
            )
        if status == BatchStatus.ABANDONED:
            raise DuplicateExecutionError(
                job.name, latest.execution_id, "the last execution for these parameters was abandoned"
            )
        if not restart:
            raise DuplicateExecutionError(
                job.name,
                latest.execution_id,
                f"the last execution is {status.value}; pass restart=True to resume it",
            )
        if not job.restartable:
            raise RestartabilityError(job.name, "the job is not restartable")
        if latest.definition_signature and latest.definition_signature != job.signature:
            raise RestartabilityError(job.name, "the job definition changed since the failed execution")

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(self, job: JobDefinition, execution: JobExecution) -> None:
        execution.mark_started()
        self._repository.save_job_execution(execution)
        self._emit_job(execution)
        logger.info(
            "job.start",
            job=job.name,
            execution_id=execution.execution_id,
            parameters=execution.parameters.to_display(),
            step_count=len(job.steps),
        )

        try:
            status, exit_status = self._walk(job, execution)
        except Exception as e:
            logger.exception(
                "job.error",
                job=job.name,
                execution_id=execution.execution_id,
                category=categorize_error(e).value,
            )
            execution.add_failure(e)
            status, exit_status = BatchStatus.FAILED, ExitStatus("FAILED", f"{type(e).__name__}: {e}")

        execution.finish(status, exit_status)
        self._repository.save_job_execution(execution)
        self._emit_job(execution)

        log = logger.info if status == BatchStatus.COMPLETED else logger.warning
        log(
            "job.complete",
            job=job.name,
            execution_id=execution.execution_id,
            status=status.value,
            exit_code=exit_status.exit_code,
            duration_seconds=execution.duration_seconds,
        )

    def _walk(self, job: JobDefinition, execution: JobExecution) -> tuple[BatchStatus, ExitStatus]:
        """Follow transitions from the first step until END, FAIL or STOP."""
        current = job.first_step.name
        while True:
            if self._stop_requested(execution):
                return BatchStatus.STOPPED, ExitStatus("STOPPED", f"stopped before step '{current}'")

            step = job.get_step(current)
            status, exit_status = self._run_unit(step, execution)
            target = job.next_step(step.name, status, exit_status)
            logger.debug(
                "job.transition",
                step=step.name,
                exit_code=exit_status.exit_code,
                target=target,
            )

            if target == END:
                return BatchStatus.COMPLETED, ExitStatus("COMPLETED")
            if target == FAIL:
                description = exit_status.exit_description or f"step '{step.name}' ended with {exit_status.exit_code}"
                return BatchStatus.FAILED, ExitStatus("FAILED", description)
            if target == STOP:
                return BatchStatus.STOPPED, ExitStatus("STOPPED", exit_status.exit_description)
            current = target

    def _run_unit(self, step: Step, execution: JobExecution) -> tuple[BatchStatus, ExitStatus]:
        if step.step_type == StepType.SPLIT:
            return self._run_split(step, execution)
        return self._run_step(step, execution)

    def _run_flow(self, steps: Sequence[Step], execution: JobExecution) -> tuple[BatchStatus, ExitStatus]:
        """Run a split flow: its steps in order, stopping at the first unsuccessful one."""
        status, exit_status = BatchStatus.COMPLETED, ExitStatus("COMPLETED")
        for step in steps:
            if self._stop_requested(execution):
                return BatchStatus.STOPPED, ExitStatus("STOPPED")
            status, exit_status = self._run_unit(step, execution)
            if status != BatchStatus.COMPLETED:
                break
        return status, exit_status

    def _run_split(self, split: Step, execution: JobExecution) -> tuple[BatchStatus, ExitStatus]:
        workers = min(split.max_workers or self._settings.max_split_workers, len(split.flows))
        logger.info("split.start", split=split.name, flows=len(split.flows), workers=workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"split-{split.name}") as pool:
            futures = [
                pool.submit(contextvars.copy_context().run, self._run_flow, flow, execution)
                for flow in split.flows
            ]
            results = [future.result() for future in futures]

        statuses = [status for status, _ in results]
        if BatchStatus.FAILED in statuses:
            status = BatchStatus.FAILED
        elif BatchStatus.STOPPED in statuses:
            status = BatchStatus.STOPPED
        else:
            status = BatchStatus.COMPLETED
        exit_status = reduce(ExitStatus.and_, (result[1] for result in results))

        logger.info("split.complete", split=split.name, status=status.value, exit_code=exit_status.exit_code)
        return status, exit_status

    def _run_step(self, step: Step, execution: JobExecution) -> tuple[BatchStatus, ExitStatus]:
        history = self._repository.find_step_executions(execution.instance_id, step.name)
        last = history[-1] if history else None

        if (
            last is not None
            and last.status == BatchStatus.COMPLETED
            and last.job_execution_id != execution.execution_id
            and not step.allow_start_if_complete
        ):
            logger.info("step.skip_completed", step=step.name, previous_execution_id=last.job_execution_id)
            self._emitter.emit(
                JobEvent(
                    event_type=EventType.STEP_SKIPPED,
                    job_name=execution.job_name,
                    execution_id=execution.execution_id,
                    status=BatchStatus.COMPLETED,
                    step_name=step.name,
                    detail={"exit_code": last.exit_status.exit_code},
                )
            )
            return BatchStatus.COMPLETED, last.exit_status

        step_execution = execution.create_step_execution(step.name)
        if last is not None and last.status != BatchStatus.COMPLETED:
            step_execution.execution_context = last.execution_context.snapshot()

        step_execution.mark_started()
        self._repository.save_step_execution(step_execution)

        ctx: StepContext | None = None
        try:
            if step.start_limit is not None and len(history) >= step.start_limit:
                raise StartLimitExceededError(step.name, step.start_limit)
            ctx = StepContext(step, execution, step_execution, lambda: self._stop_requested(execution))
            self._emit_step(execution, step_execution, dict(ctx.parameters))
            status = self._runner.run(ctx)
            step_execution.finish(status)
        except StepExecutionError as e:
            if ctx is None:
                self._emit_step(execution, step_execution)
            self._fail_step(execution, step_execution, e)
        except Exception as e:
            logger.exception("step.unexpected_error", step=step.name, category=categorize_error(e).value)
            if ctx is None:
                self._emit_step(execution, step_execution)
            self._fail_step(execution, step_execution, StepExecutionError(step.name, cause=e))

        self._repository.save_step_execution(step_execution)
        self._emit_step(execution, step_execution)
        logger.info(
            "step.complete",
            step=step.name,
            status=step_execution.status.value,
            exit_code=step_execution.exit_status.exit_code,
            read_count=step_execution.read_count,
            write_count=step_execution.write_count,
            commit_count=step_execution.commit_count,
        )
        return step_execution.status, step_execution.exit_status

    def _fail_step(self, execution: JobExecution, step_execution: StepExecution, error: StepExecutionError) -> None:
        step_execution.add_failure(error.cause or error)
        step_execution.finish(BatchStatus.FAILED, ExitStatus("FAILED", error.message))
        execution.add_failure(error)
        logger.error(
            "step.failed",
            step=step_execution.step_name,
            error=error.message,
            category=error.category.value,
        )

    # =========================================================================
    # Stop + events
    # =========================================================================

    def _stop_requested(self, execution: JobExecution) -> bool:
        with self._stop_lock:
            if execution.execution_id in self._stop_requests:
                return True
        return self._repository.get_job_status(execution.execution_id) == BatchStatus.STOPPING

    def _emit_job(self, execution: JobExecution) -> None:
        self._emitter.emit(
            JobEvent(
                event_type=EventType.JOB_STATUS,
                job_name=execution.job_name,
                execution_id=execution.execution_id,
                status=execution.status,
                parameters=execution.parameters.to_display(),
                detail={"exit_code": execution.exit_status.exit_code},
            )
        )

    def _emit_step(
        self,
        execution: JobExecution,
        step_execution: StepExecution,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        detail: dict[str, Any] = {"exit_code": step_execution.exit_status.exit_code}
        if step_execution.status.is_terminal:
            detail.update(
                read_count=step_execution.read_count,
                write_count=step_execution.write_count,
                commit_count=step_execution.commit_count,
            )
            if step_execution.exit_status.exit_description:
                detail["exit_description"] = step_execution.exit_status.exit_description
        self._emitter.emit(
            JobEvent(
                event_type=EventType.STEP_STATUS,
                job_name=execution.job_name,
                execution_id=execution.execution_id,
                status=step_execution.status,
                step_name=step_execution.step_name,
                parameters=parameters or {},
                detail=detail,
            )
        )
