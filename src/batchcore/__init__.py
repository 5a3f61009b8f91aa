"""
batch-core — a batch job execution engine.

Jobs are ordered steps (tasklets, chunk-oriented read/process/write steps
and parallel splits) launched with a parameter set, tracked in an execution
repository and restartable from the last committed step.

Example::

    from batchcore import ExecutionEngine, RepeatStatus, Step, job

    def step1(ctx):
        ctx.logger.info("step1", request_date=ctx.parameters["requestDate"])
        return RepeatStatus.FINISHED

    simple = job("simpleJob", Step.tasklet("simpleStep1", step1, parameters=("requestDate",)))
    execution = ExecutionEngine().run(simple, {"requestDate": "2024-01-02"})
"""

__version__ = "0.1.0"

from batchcore.domain import (  # noqa: E402
    BatchStatus,
    ExitStatus,
    JobExecution,
    JobInstance,
    JobParameter,
    ParameterSet,
    ParameterType,
    RunIdIncrementer,
    StepExecution,
)
from batchcore.orchestration import (  # noqa: E402
    END,
    FAIL,
    STOP,
    ExecutionEngine,
    JobDefinition,
    JobLauncher,
    RepeatStatus,
    RetryPolicy,
    SkipPolicy,
    Step,
    Transition,
    job,
)

__all__ = [
    "__version__",
    "BatchStatus",
    "ExitStatus",
    "JobExecution",
    "JobInstance",
    "JobParameter",
    "ParameterSet",
    "ParameterType",
    "RunIdIncrementer",
    "StepExecution",
    "END",
    "FAIL",
    "STOP",
    "ExecutionEngine",
    "JobDefinition",
    "JobLauncher",
    "RepeatStatus",
    "RetryPolicy",
    "SkipPolicy",
    "Step",
    "Transition",
    "job",
]
