#!/usr/bin/env python3
"""Chunk Job - read, transform and write records in committed chunks.

The reader is built per execution from the ``limit`` launch parameter
(default 10). Odd numbers are filtered by the processor; every chunk of
three items is written in one call and committed before the next chunk is
read.

Run: python examples/chunk_job.py [limit]
"""
from batchcore import Step, job
from batchcore.orchestration import ListItemWriter

writer = ListItemWriter()


def read_numbers(ctx) -> range:
    limit = ctx.parameters.get("limit") or 10
    return range(1, int(limit) + 1)


def double_even(item: int) -> int | None:
    if item % 2:
        return None
    return item * 2


chunk_job = job(
    "chunkJob",
    Step.chunk(
        "doubleEvens",
        reader=read_numbers,
        processor=double_even,
        writer=writer,
        chunk_size=3,
        parameters=("limit",),
    ),
)


if __name__ == "__main__":
    import sys

    from batchcore import ExecutionEngine
    from batchcore.core.logging import configure_logging

    configure_logging(level="INFO", json_format=False)
    parameters = {"limit": int(sys.argv[1])} if len(sys.argv) > 1 else {}
    execution = ExecutionEngine().run(chunk_job, parameters)
    step = execution.step_executions[0]
    print(f"status={execution.status.value} read={step.read_count} "
          f"filtered={step.filter_count} written={step.write_count} commits={step.commit_count}")
    print(f"chunks={writer.chunks}")
