"""Orchestration exceptions — structured error hierarchy.

All orchestration exceptions inherit from ``batchcore.core.errors.OrchestrationError``
so that callers can catch the entire family with a single ``except`` clause.

Hierarchy::

    OrchestrationError  (from batchcore.core.errors)
      ├── JobDefinitionError               ── invalid job/step layout
      ├── JobNotFoundError                 ── launcher lookup failure
      ├── DuplicateExecutionError          ── (job, parameters) already ran
      ├── JobExecutionAlreadyRunningError  ── instance is running right now
      ├── RestartabilityError              ── restart refused
      └── StepExecutionError               ── tasklet/reader/processor/writer failure
            ├── MissingParameterError
            ├── SkipLimitExceededError
            └── StartLimitExceededError
"""

from __future__ import annotations

from batchcore.core.errors import ErrorCategory, OrchestrationError


class JobDefinitionError(OrchestrationError):
    """Raised when a job definition is structurally invalid."""

    default_category = ErrorCategory.DEFINITION

    def __init__(self, message: str, job_name: str | None = None):
        self.job_name = job_name
        super().__init__(message)
        if job_name:
            self.with_context(job=job_name)


class JobNotFoundError(OrchestrationError):
    """Raised when a requested job is not registered."""

    def __init__(self, job_name: str, available: list[str] | None = None):
        self.job_name = job_name
        names = ", ".join(sorted(available)) if available else "(none)"
        super().__init__(f"Job '{job_name}' not found. Available: {names}")


class DuplicateExecutionError(OrchestrationError):
    """Raised when (job, parameters) already has an execution that forbids a new one."""

    def __init__(self, job_name: str, execution_id: str, reason: str):
        self.job_name = job_name
        self.execution_id = execution_id
        super().__init__(f"Job '{job_name}' cannot be launched with these parameters: {reason}")
        self.with_context(job=job_name, execution_id=execution_id)


class JobExecutionAlreadyRunningError(OrchestrationError):
    """Raised when the job instance has an execution that is still running."""

    def __init__(self, job_name: str, execution_id: str):
        self.job_name = job_name
        self.execution_id = execution_id
        super().__init__(f"Job '{job_name}' is already running (execution {execution_id})")
        self.with_context(job=job_name, execution_id=execution_id)


class RestartabilityError(OrchestrationError):
    """Raised when a failed/stopped run cannot be restarted."""

    def __init__(self, job_name: str, reason: str):
        self.job_name = job_name
        self.reason = reason
        super().__init__(f"Job '{job_name}' cannot be restarted: {reason}")
        self.with_context(job=job_name)


class StepExecutionError(OrchestrationError):
    """Raised when a step body (tasklet, reader, processor, writer) fails."""

    default_category = ErrorCategory.STEP

    def __init__(self, step_name: str, cause: BaseException | None = None, message: str | None = None):
        self.step_name = step_name
        detail = message or (f"{type(cause).__name__}: {cause}" if cause is not None else "step failed")
        super().__init__(f"Step '{step_name}' failed: {detail}", cause=cause)
        self.with_context(step=step_name)


class MissingParameterError(StepExecutionError):
    """Raised when a step requires a parameter the launch did not supply."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, step_name: str, parameter: str):
        self.parameter = parameter
        super().__init__(step_name, message=f"required parameter '{parameter}' is missing")


class SkipLimitExceededError(StepExecutionError):
    """Raised when a chunk step skips more items than its policy allows."""

    def __init__(self, step_name: str, skip_limit: int, cause: BaseException):
        self.skip_limit = skip_limit
        super().__init__(step_name, cause=cause, message=f"skip limit of {skip_limit} exceeded ({cause})")


class StartLimitExceededError(StepExecutionError):
    """Raised when a step has been started more often than its start limit."""

    def __init__(self, step_name: str, start_limit: int):
        self.start_limit = start_limit
        super().__init__(step_name, message=f"start limit of {start_limit} exceeded")
