"""Tests for JobLauncher and JobExecutionSummary."""

import pytest

from batchcore.core.errors import ParameterError
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus
from batchcore.orchestration import (
    DuplicateExecutionError,
    JobLauncher,
    JobNotFoundError,
    RepeatStatus,
    Step,
    job,
    register_job,
)
from batchcore.orchestration.launcher import to_parameter_set


def _request_date(ctx):
    ctx.execution_context["seen"] = str(ctx.parameters["requestDate"])
    return RepeatStatus.FINISHED


@pytest.fixture
def launcher(engine):
    register_job(job("simpleJob", Step.tasklet("simpleStep1", _request_date, parameters=("requestDate",))))
    return JobLauncher(engine)


class TestToParameterSet:
    def test_none_is_empty(self):
        assert len(to_parameter_set(None)) == 0

    def test_parameter_set_passes_through(self):
        params = ParameterSet.from_mapping({"a": 1})
        assert to_parameter_set(params) is params

    def test_mapping(self):
        assert to_parameter_set({"a": 1})["a"] == 1

    def test_strings(self):
        assert to_parameter_set(["count(long)=3"])["count"] == 3

    def test_single_string_is_one_parameter(self):
        params = to_parameter_set("requestDate(date)=2024-01-02")
        assert list(params) == ["requestDate"]
        assert str(params["requestDate"]) == "2024-01-02"

    def test_bad_string(self):
        with pytest.raises(ParameterError):
            to_parameter_set(["oops"])


class TestJobLauncher:
    def test_launch_by_name(self, launcher):
        summary = launcher.launch("simpleJob", ["requestDate(date)=2024-01-02"])

        assert summary.succeeded
        assert summary.status == BatchStatus.COMPLETED
        assert summary.exit_code == "COMPLETED"
        assert summary.job_name == "simpleJob"
        assert [s["step_name"] for s in summary.step_summaries] == ["simpleStep1"]

    def test_summary_to_dict(self, launcher):
        data = launcher.launch("simpleJob", {"requestDate": "2024-01-02"}).to_dict()
        assert data["status"] == "COMPLETED"
        assert data["step_summaries"][0]["commit_count"] == 1

    def test_unknown_job(self, launcher):
        with pytest.raises(JobNotFoundError, match="simpleJob"):
            launcher.launch("missingJob")

    def test_duplicate_launch_raises(self, launcher):
        launcher.launch("simpleJob", {"requestDate": "2024-01-02"})
        with pytest.raises(DuplicateExecutionError):
            launcher.launch("simpleJob", {"requestDate": "2024-01-02"})

    def test_failed_summary(self, engine):
        def boom(ctx):
            raise RuntimeError("nope")

        summary = JobLauncher(engine).launch_definition(job("broken", Step.tasklet("a", boom)))
        assert not summary.succeeded
        assert summary.exit_code == "FAILED"
        assert "nope" in summary.exit_description

    def test_custom_resolver(self, engine):
        definition = job("fromResolver", Step.tasklet("a", lambda ctx: None))
        launcher = JobLauncher(engine, resolver=lambda name: definition)
        assert launcher.launch("anything").job_name == "fromResolver"
