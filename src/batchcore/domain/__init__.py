"""Domain records: parameters, statuses and execution history."""

from batchcore.domain.execution import ExecutionContext, JobExecution, JobInstance, StepExecution
from batchcore.domain.parameters import JobParameter, ParameterSet, ParameterType, RunIdIncrementer
from batchcore.domain.status import BatchStatus, ExitStatus

__all__ = [
    "BatchStatus",
    "ExecutionContext",
    "ExitStatus",
    "JobExecution",
    "JobInstance",
    "JobParameter",
    "ParameterSet",
    "ParameterType",
    "RunIdIncrementer",
    "StepExecution",
]
