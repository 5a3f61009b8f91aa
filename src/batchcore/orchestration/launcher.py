"""Job launcher — start a registered job by name and report a summary.

The launcher is the outer collaborator of the engine: it resolves a job
name through the registry, normalises parameters and turns the terminal
JobExecution into a flat, serialisable :class:`JobExecutionSummary`.

Example::

    launcher = JobLauncher(ExecutionEngine(repository))
    summary = launcher.launch("simpleJob", ["requestDate(date)=2024-01-02"])
    print(summary.status, summary.exit_code)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from batchcore.core.logging import get_logger
from batchcore.domain.execution import JobExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus
from batchcore.orchestration.engine import ExecutionEngine
from batchcore.orchestration.job import JobDefinition
from batchcore.orchestration.registry import get_job

logger = get_logger(__name__)

ParameterInput = ParameterSet | Mapping[str, Any] | str | Iterable[str] | None


@dataclass(frozen=True)
class JobExecutionSummary:
    """Terminal outcome of one launch."""

    execution_id: str
    job_name: str
    status: BatchStatus
    exit_code: str
    exit_description: str = ""
    step_summaries: list[dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.COMPLETED

    @classmethod
    def from_execution(cls, execution: JobExecution) -> JobExecutionSummary:
        return cls(
            execution_id=execution.execution_id,
            job_name=execution.job_name,
            status=execution.status,
            exit_code=execution.exit_status.exit_code,
            exit_description=execution.exit_status.exit_description,
            step_summaries=[s.summary() for s in execution.step_executions],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "job_name": self.job_name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "exit_description": self.exit_description,
            "step_summaries": list(self.step_summaries),
        }


def to_parameter_set(parameters: ParameterInput) -> ParameterSet:
    """Accept a ParameterSet, a plain mapping or ``name(type)=value`` strings.

    A single string is one parameter, not a sequence of characters.
    """
    if parameters is None:
        return ParameterSet.empty()
    if isinstance(parameters, str):
        return ParameterSet.from_strings([parameters])
    if isinstance(parameters, ParameterSet):
        return parameters
    if isinstance(parameters, Mapping):
        return ParameterSet.from_mapping(parameters)
    return ParameterSet.from_strings(parameters)


class JobLauncher:
    """Launches jobs by name through an :class:`ExecutionEngine`."""

    def __init__(
        self,
        engine: ExecutionEngine | None = None,
        resolver: Callable[[str], JobDefinition] = get_job,
    ) -> None:
        self._engine = engine or ExecutionEngine()
        self._resolver = resolver

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    def launch(
        self,
        job_name: str,
        parameters: ParameterInput = None,
        *,
        restart: bool = False,
    ) -> JobExecutionSummary:
        """Run the named job and return its terminal summary.

        Raises:
            JobNotFoundError: Unknown job name.
            ParameterError: Malformed parameter notation.
            DuplicateExecutionError, JobExecutionAlreadyRunningError,
            RestartabilityError: Launch refused.
        """
        definition = self._resolver(job_name)
        return self.launch_definition(definition, parameters, restart=restart)

    def launch_definition(
        self,
        definition: JobDefinition,
        parameters: ParameterInput = None,
        *,
        restart: bool = False,
    ) -> JobExecutionSummary:
        parameter_set = to_parameter_set(parameters)
        logger.info("launcher.launch", job=definition.name, restart=restart, parameters=parameter_set.to_display())
        execution = self._engine.run(definition, parameter_set, restart=restart)
        return JobExecutionSummary.from_execution(execution)
