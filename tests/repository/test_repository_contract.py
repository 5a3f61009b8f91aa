"""Behaviour shared by every ExecutionRepository backend."""

from datetime import UTC

import pytest

from batchcore.core.errors import ExecutionNotFoundError, ExecutionStateError
from batchcore.domain.execution import JobExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus, ExitStatus
from batchcore.repository import merge_status

PARAMS = ParameterSet.from_strings(["requestDate(date)=2024-01-02", "-verbose=yes"])


@pytest.fixture(params=["memory", "sqlalchemy"])
def repo(request):
    name = "repository" if request.param == "memory" else "sql_repository"
    return request.getfixturevalue(name)


def _new_execution(repo, job_name="simpleJob", parameters=PARAMS) -> JobExecution:
    instance = repo.create_job_instance(job_name, parameters)
    execution = JobExecution(instance=instance, parameters=parameters, definition_signature="sig")
    repo.save_job_execution(execution)
    return execution


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


class TestJobInstances:
    def test_same_identity_same_instance(self, repo):
        first = repo.create_job_instance("simpleJob", PARAMS)
        again = repo.create_job_instance(
            "simpleJob", ParameterSet.from_strings(["requestDate(date)=2024-01-02", "-verbose=no"])
        )
        assert first.instance_id == again.instance_id

    def test_other_parameters_other_instance(self, repo):
        first = repo.create_job_instance("simpleJob", PARAMS)
        other = repo.create_job_instance("simpleJob", ParameterSet.from_mapping({"requestDate": "x"}))
        assert first.instance_id != other.instance_id

    def test_other_job_other_instance(self, repo):
        assert (
            repo.create_job_instance("a", PARAMS).instance_id
            != repo.create_job_instance("b", PARAMS).instance_id
        )


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


class TestJobExecutions:
    def test_round_trip(self, repo):
        execution = _new_execution(repo)
        execution.mark_started()
        step = execution.create_step_execution("simpleStep1")
        step.mark_started()
        step.read_count = 5
        step.write_count = 4
        step.filter_count = 1
        step.commit_count = 2
        step.execution_context["reader.read.count"] = 5
        step.finish(BatchStatus.COMPLETED, ExitStatus("NO_DATA", "nothing"))
        repo.save_step_execution(step)
        execution.finish(BatchStatus.COMPLETED)
        repo.save_job_execution(execution)

        loaded = repo.get_job_execution(execution.execution_id)
        assert loaded.status == BatchStatus.COMPLETED
        assert loaded.instance_id == execution.instance_id
        assert loaded.parameters == PARAMS
        assert loaded.parameters.parameter("verbose").identifying is False
        assert loaded.definition_signature == "sig"

        loaded_step = loaded.step_executions[0]
        assert loaded_step.step_name == "simpleStep1"
        assert (loaded_step.read_count, loaded_step.write_count, loaded_step.filter_count) == (5, 4, 1)
        assert loaded_step.commit_count == 2
        assert loaded_step.exit_status == ExitStatus("NO_DATA", "nothing")
        assert loaded_step.execution_context == {"reader.read.count": 5}

    def test_timestamps_are_utc(self, repo):
        execution = _new_execution(repo)
        execution.mark_started()
        repo.save_job_execution(execution)
        loaded = repo.get_job_execution(execution.execution_id)
        assert loaded.created_at.tzinfo is not None
        assert loaded.started_at.utcoffset() == UTC.utcoffset(None)
        assert loaded.started_at == execution.started_at

    def test_step_updates_replace_in_place(self, repo):
        execution = _new_execution(repo)
        step = execution.create_step_execution("s")
        repo.save_step_execution(step)
        step.commit_count = 3
        repo.save_step_execution(step)
        loaded = repo.get_job_execution(execution.execution_id)
        assert len(loaded.step_executions) == 1
        assert loaded.step_executions[0].commit_count == 3

    def test_loaded_copy_is_detached(self, repo):
        execution = _new_execution(repo)
        loaded = repo.get_job_execution(execution.execution_id)
        loaded.status = BatchStatus.FAILED
        assert repo.get_job_status(execution.execution_id) == BatchStatus.STARTING

    def test_unknown_execution(self, repo):
        with pytest.raises(ExecutionNotFoundError):
            repo.get_job_execution("missing")
        with pytest.raises(ExecutionNotFoundError):
            repo.get_job_status("missing")

    def test_step_for_unknown_execution(self, repo):
        orphan = _new_execution(repo).create_step_execution("s")
        orphan.job_execution_id = "missing"
        with pytest.raises(ExecutionNotFoundError):
            repo.save_step_execution(orphan)


# ---------------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------------


class TestStatus:
    def test_stopping_survives_started_save(self, repo):
        execution = _new_execution(repo)
        execution.mark_started()
        repo.save_job_execution(execution)
        repo.update_job_status(execution.execution_id, BatchStatus.STOPPING)

        repo.save_job_execution(execution)
        assert repo.get_job_status(execution.execution_id) == BatchStatus.STOPPING

        execution.finish(BatchStatus.STOPPED)
        repo.save_job_execution(execution)
        assert repo.get_job_status(execution.execution_id) == BatchStatus.STOPPED

    def test_finished_execution_cannot_be_stopped(self, repo):
        execution = _new_execution(repo)
        execution.mark_started()
        execution.finish(BatchStatus.COMPLETED)
        repo.save_job_execution(execution)
        with pytest.raises(ExecutionStateError):
            repo.update_job_status(execution.execution_id, BatchStatus.STOPPING)


class TestMergeStatus:
    def test_keeps_stopping_over_started(self):
        assert merge_status(BatchStatus.STOPPING, BatchStatus.STARTED) == BatchStatus.STOPPING

    def test_otherwise_incoming_wins(self):
        assert merge_status(BatchStatus.STOPPING, BatchStatus.STOPPED) == BatchStatus.STOPPED
        assert merge_status(None, BatchStatus.STARTING) == BatchStatus.STARTING


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_find_latest(self, repo):
        assert repo.find_latest("simpleJob", PARAMS) is None
        first = _new_execution(repo)
        first.mark_started()
        first.finish(BatchStatus.FAILED)
        repo.save_job_execution(first)
        second = JobExecution(instance=first.instance, parameters=PARAMS)
        repo.save_job_execution(second)

        latest = repo.find_latest("simpleJob", PARAMS)
        assert latest.execution_id == second.execution_id
        assert repo.find_latest("otherJob", PARAMS) is None

    def test_find_last_instance_execution_follows_instance_creation(self, repo):
        run_1 = ParameterSet.from_mapping({"run.id": 1})
        run_2 = ParameterSet.from_mapping({"run.id": 2})
        older = _new_execution(repo, parameters=run_1)
        newer = _new_execution(repo, parameters=run_2)
        newer_retry = JobExecution(instance=newer.instance, parameters=run_2)
        repo.save_job_execution(newer_retry)
        repo.save_job_execution(JobExecution(instance=older.instance, parameters=run_1))

        found = repo.find_last_instance_execution("simpleJob")
        assert found.instance_id == newer.instance_id
        assert found.execution_id == newer_retry.execution_id
        assert repo.find_last_instance_execution("nothing") is None

    def test_find_step_executions_oldest_first(self, repo):
        first = _new_execution(repo)
        repo.save_step_execution(first.create_step_execution("load"))
        repo.save_step_execution(first.create_step_execution("other"))
        second = JobExecution(instance=first.instance, parameters=PARAMS)
        repo.save_job_execution(second)
        repo.save_step_execution(second.create_step_execution("load"))

        history = repo.find_step_executions(first.instance_id, "load")
        assert [s.job_execution_id for s in history] == [first.execution_id, second.execution_id]
        assert repo.find_step_executions(first.instance_id, "missing") == []

    def test_list_job_executions(self, repo):
        a1 = _new_execution(repo, "a")
        b1 = _new_execution(repo, "b")
        a2 = _new_execution(repo, "a", ParameterSet.from_mapping({"n": 2}))

        assert [e.execution_id for e in repo.list_job_executions()] == [
            a2.execution_id,
            b1.execution_id,
            a1.execution_id,
        ]
        assert [e.execution_id for e in repo.list_job_executions("a")] == [a2.execution_id, a1.execution_id]
        assert len(repo.list_job_executions(limit=1)) == 1
