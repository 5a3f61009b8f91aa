"""Restart semantics against both repository backends."""

import pytest

from batchcore.core.errors import ExecutionStateError
from batchcore.domain.parameters import RunIdIncrementer
from batchcore.domain.status import BatchStatus
from batchcore.orchestration import (
    DuplicateExecutionError,
    EventType,
    ExecutionEngine,
    ListItemReader,
    ListItemWriter,
    RepeatStatus,
    RestartabilityError,
    Step,
    Transition,
    job,
)

PARAMS = {"requestDate": "2024-01-02"}


@pytest.fixture(params=["memory", "sqlalchemy"])
def backend(request):
    name = "repository" if request.param == "memory" else "sql_repository"
    return request.getfixturevalue(name)


@pytest.fixture
def restart_engine(backend, events, settings):
    return ExecutionEngine(backend, listeners=[events.append], settings=settings)


class FailOnce:
    """Tasklet that fails on its first call only."""

    def __init__(self, calls):
        self.calls = calls
        self.failed = False

    def __call__(self, ctx):
        self.calls.append(ctx.step_name)
        if not self.failed:
            self.failed = True
            raise RuntimeError("transient")
        return RepeatStatus.FINISHED


def _three_steps(calls, middle, **kwargs):
    def record(ctx):
        calls.append(ctx.step_name)
        return RepeatStatus.FINISHED

    return job(
        "restartJob",
        Step.tasklet("extract", record, **kwargs),
        Step.tasklet("transform", middle),
        Step.tasklet("load", record),
    )


# ---------------------------------------------------------------------------
# Resuming
# ---------------------------------------------------------------------------


class TestResume:
    def test_restart_skips_completed_steps(self, restart_engine, events):
        calls = []
        definition = _three_steps(calls, FailOnce(calls))

        first = restart_engine.run(definition, PARAMS)
        assert first.status == BatchStatus.FAILED
        assert calls == ["extract", "transform"]

        calls.clear()
        events.clear()
        second = restart_engine.run(definition, PARAMS, restart=True)

        assert second.status == BatchStatus.COMPLETED
        assert second.instance_id == first.instance_id
        assert second.execution_id != first.execution_id
        assert calls == ["transform", "load"]
        assert [s.step_name for s in second.step_executions] == ["transform", "load"]

        skipped = [e.step_name for e in events if e.event_type == EventType.STEP_SKIPPED]
        assert skipped == ["extract"]

    def test_restart_history_is_kept(self, restart_engine, backend):
        calls = []
        definition = _three_steps(calls, FailOnce(calls))
        first = restart_engine.run(definition, PARAMS)
        second = restart_engine.run(definition, PARAMS, restart=True)

        history = backend.find_step_executions(first.instance_id, "transform")
        assert [s.status for s in history] == [BatchStatus.FAILED, BatchStatus.COMPLETED]
        assert [s.job_execution_id for s in history] == [first.execution_id, second.execution_id]
        assert backend.get_job_execution(first.execution_id).status == BatchStatus.FAILED

    def test_allow_start_if_complete_reruns(self, restart_engine):
        calls = []
        definition = _three_steps(calls, FailOnce(calls), allow_start_if_complete=True)
        restart_engine.run(definition, PARAMS)
        calls.clear()
        restart_engine.run(definition, PARAMS, restart=True)
        assert calls == ["extract", "transform", "load"]

    def test_restart_without_history_runs_fresh(self, restart_engine):
        calls = []
        execution = restart_engine.run(_three_steps(calls, FailOnce(calls)), {"requestDate": "x"}, restart=True)
        assert execution.status == BatchStatus.FAILED
        assert calls == ["extract", "transform"]

    def test_recorded_exit_code_drives_routing(self, restart_engine):
        calls = []

        def no_data(ctx):
            calls.append(ctx.step_name)
            ctx.set_exit_status("NO_DATA")
            return RepeatStatus.FINISHED

        def report(ctx):
            calls.append(ctx.step_name)
            return RepeatStatus.FINISHED

        definition = job(
            "routed",
            Step.tasklet("check", no_data),
            Step.tasklet("fallback", FailOnce(calls)),
            Step.tasklet("report", report),
            transitions=[
                Transition("check", on="NO_DATA", to="fallback"),
                Transition("check", on="*", to="report"),
                Transition("fallback", on="COMPLETED", to="report"),
                Transition("report"),
            ],
        )
        restart_engine.run(definition, PARAMS)
        calls.clear()
        execution = restart_engine.run(definition, PARAMS, restart=True)

        assert execution.status == BatchStatus.COMPLETED
        assert calls == ["fallback", "report"]

    def test_chunk_reader_resumes_after_last_commit(self, restart_engine):
        writer = ListItemWriter()
        attempts = {"n": 0}

        def fail_third_chunk_once(items):
            attempts["n"] += 1
            if attempts["n"] == 3:
                raise IOError("disk full")
            writer.write(items)

        definition = job(
            "resumable",
            Step.chunk(
                "copy",
                reader=lambda ctx: ListItemReader(list(range(10)), name="numbers"),
                writer=fail_third_chunk_once,
                chunk_size=3,
            ),
        )
        first = restart_engine.run(definition, PARAMS)
        failed_step = first.step_executions[0]
        assert first.status == BatchStatus.FAILED
        assert failed_step.execution_context["numbers.read.count"] == 6

        second = restart_engine.run(definition, PARAMS, restart=True)
        step = second.step_executions[0]

        assert second.status == BatchStatus.COMPLETED
        assert writer.written == list(range(10))
        assert step.read_count == 4
        assert step.execution_context["numbers.read.count"] == 10

    def test_stopped_execution_can_be_restarted(self, restart_engine):
        state = {"n": 0}
        holder = {}

        def stop_first_time(ctx):
            state["n"] += 1
            if state["n"] == 1:
                holder["engine"].stop(ctx.job_execution.execution_id)
                return RepeatStatus.CONTINUE
            return RepeatStatus.FINISHED

        holder["engine"] = restart_engine
        definition = job("stoppable", Step.tasklet("work", stop_first_time))

        first = restart_engine.run(definition, PARAMS)
        assert first.status == BatchStatus.STOPPED
        second = restart_engine.run(definition, PARAMS, restart=True)
        assert second.status == BatchStatus.COMPLETED


# ---------------------------------------------------------------------------
# Refusals
# ---------------------------------------------------------------------------


class TestRestartRefused:
    def test_non_restartable_job(self, restart_engine):
        def boom(ctx):
            raise RuntimeError("boom")

        definition = job("oneShot", Step.tasklet("a", boom), restartable=False)
        restart_engine.run(definition, PARAMS)
        with pytest.raises(RestartabilityError, match="not restartable"):
            restart_engine.run(definition, PARAMS, restart=True)

    def test_changed_definition(self, restart_engine):
        calls = []
        restart_engine.run(_three_steps(calls, FailOnce(calls)), PARAMS)

        changed = job("restartJob", Step.tasklet("extract", lambda ctx: None))
        with pytest.raises(RestartabilityError, match="definition changed"):
            restart_engine.run(changed, PARAMS, restart=True)

    def test_abandoned_execution_is_never_restarted(self, restart_engine, events):
        calls = []
        definition = _three_steps(calls, FailOnce(calls))
        failed = restart_engine.run(definition, PARAMS)

        abandoned = restart_engine.abandon(failed.execution_id)
        assert abandoned.status == BatchStatus.ABANDONED
        assert events[-1].status == BatchStatus.ABANDONED

        with pytest.raises(DuplicateExecutionError, match="abandoned"):
            restart_engine.run(definition, PARAMS, restart=True)

    def test_completed_execution_cannot_be_abandoned(self, restart_engine):
        execution = restart_engine.run(job("done", Step.tasklet("a", lambda ctx: None)), PARAMS)
        with pytest.raises(ExecutionStateError):
            restart_engine.abandon(execution.execution_id)

    def test_start_limit(self, restart_engine):
        def always_fails(ctx):
            raise RuntimeError("still broken")

        definition = job("limited", Step.tasklet("fragile", always_fails, start_limit=2))
        restart_engine.run(definition, PARAMS)
        restart_engine.run(definition, PARAMS, restart=True)
        third = restart_engine.run(definition, PARAMS, restart=True)

        step = third.step_executions[0]
        assert third.status == BatchStatus.FAILED
        assert "start limit of 2 exceeded" in step.exit_status.exit_description
        assert step.commit_count == 0


# ---------------------------------------------------------------------------
# Incrementer
# ---------------------------------------------------------------------------


class TestIncrementer:
    def test_every_launch_is_a_new_instance(self, restart_engine):
        definition = job("daily", Step.tasklet("a", lambda ctx: None), incrementer=RunIdIncrementer())
        first = restart_engine.run(definition, PARAMS)
        second = restart_engine.run(definition, PARAMS)

        assert first.instance_id != second.instance_id
        assert first.parameters["run.id"] == 1
        assert second.parameters["run.id"] == 2

    def test_restart_targets_latest_run(self, restart_engine):
        calls = []
        definition = job("daily", Step.tasklet("a", FailOnce(calls)), incrementer=RunIdIncrementer())
        first = restart_engine.run(definition, PARAMS)
        second = restart_engine.run(definition, PARAMS, restart=True)

        assert second.instance_id == first.instance_id
        assert second.parameters["run.id"] == 1
        assert second.status == BatchStatus.COMPLETED

    def test_restarting_an_older_run_keeps_the_sequence(self, restart_engine):
        calls = []
        definition = job("daily", Step.tasklet("a", FailOnce(calls)), incrementer=RunIdIncrementer())
        failed = restart_engine.run(definition, PARAMS)
        completed = restart_engine.run(definition, PARAMS)
        resumed = restart_engine.run(definition, {**PARAMS, "run.id": 1}, restart=True)

        assert failed.status == BatchStatus.FAILED
        assert completed.parameters["run.id"] == 2
        assert resumed.instance_id == failed.instance_id
        assert resumed.status == BatchStatus.COMPLETED

        following = restart_engine.run(definition, PARAMS)
        assert following.status == BatchStatus.COMPLETED
        assert following.parameters["run.id"] == 3
