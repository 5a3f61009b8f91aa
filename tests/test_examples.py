"""The bundled example jobs run end to end."""

import pytest

from batchcore import ExecutionEngine
from batchcore.domain.status import BatchStatus
from batchcore.orchestration import DuplicateExecutionError
from examples.chunk_job import chunk_job, writer
from examples.simple_job import simple_job


class TestSimpleJob:
    def test_runs_both_steps(self, repository, settings):
        engine = ExecutionEngine(repository, settings=settings)
        execution = engine.run(simple_job, {"requestDate": "2024-01-02"})

        assert execution.status == BatchStatus.COMPLETED
        assert [s.step_name for s in execution.step_executions] == ["simpleStep1", "simpleStep2"]

    def test_second_launch_is_a_duplicate(self, repository, settings):
        engine = ExecutionEngine(repository, settings=settings)
        engine.run(simple_job, {"requestDate": "2024-01-02"})
        with pytest.raises(DuplicateExecutionError):
            engine.run(simple_job, {"requestDate": "2024-01-02"})


class TestChunkJob:
    def test_doubles_evens_in_chunks_of_three(self, repository, settings):
        writer.chunks.clear()
        execution = ExecutionEngine(repository, settings=settings).run(chunk_job)
        step = execution.step_executions[0]

        assert execution.status == BatchStatus.COMPLETED
        assert writer.written == [4, 8, 12, 16, 20]
        assert (step.read_count, step.filter_count, step.write_count, step.commit_count) == (10, 5, 5, 4)

    def test_limit_parameter_reaches_the_reader(self, repository, settings):
        writer.chunks.clear()
        execution = ExecutionEngine(repository, settings=settings).run(chunk_job, {"limit": 4})
        step = execution.step_executions[0]

        assert execution.status == BatchStatus.COMPLETED
        assert writer.written == [4, 8]
        assert step.read_count == 4
