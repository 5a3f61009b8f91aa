#!/usr/bin/env python3
"""Simple Job - two tasklet steps reading the ``requestDate`` parameter.

Each step logs a line and its resolved ``requestDate``, then finishes.
Launching it twice with the same ``requestDate`` is refused as a duplicate.

Run: batchcore run examples.simple_job:simple_job -p "requestDate=2024-01-02"
"""
from batchcore import RepeatStatus, Step, job
from batchcore.orchestration import StepContext


def simple_step1(ctx: StepContext) -> RepeatStatus:
    ctx.logger.info(">>>>> This is Step1")
    ctx.logger.info(">>>>> requestDate", request_date=ctx.parameters["requestDate"])
    return RepeatStatus.FINISHED


def simple_step2(ctx: StepContext) -> RepeatStatus:
    ctx.logger.info(">>>>> This is Step2")
    ctx.logger.info(">>>>> requestDate", request_date=ctx.parameters["requestDate"])
    return RepeatStatus.FINISHED


simple_job = job(
    "simpleJob",
    Step.tasklet("simpleStep1", simple_step1, parameters=("requestDate",)),
    Step.tasklet("simpleStep2", simple_step2, parameters=("requestDate",)),
    description="Two sequential tasklets printing the request date",
)


if __name__ == "__main__":
    from batchcore import ExecutionEngine
    from batchcore.core.logging import configure_logging
    from batchcore.orchestration import LoggingEventListener

    configure_logging(level="INFO", json_format=False)
    engine = ExecutionEngine(listeners=[LoggingEventListener()])
    execution = engine.run(simple_job, {"requestDate": "2024-01-02"})
    print(f"{execution.job_name}: {execution.status.value}")
