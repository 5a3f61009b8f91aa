"""Step Context — the per-run object passed down to every step body.

A ``StepContext`` is created by the engine when a step starts. It carries
the resolved launch parameters, the step's restart state and an event
emitter, replacing any ambient injection: a tasklet sees exactly what the
engine hands it.

Parameter resolution happens once, at context creation:

- a step that declares ``parameters=(...)`` sees only those names;
  a declared name missing from the launch resolves to ``None``;
- a name listed in ``required_parameters`` that is missing raises
  ``MissingParameterError`` and fails the step;
- a step that declares nothing sees every launch parameter.

Example::

    def report(ctx: StepContext) -> RepeatStatus:
        ctx.logger.info("report.start", request_date=ctx.parameters["requestDate"])
        ctx.execution_context["pages"] = 3
        return RepeatStatus.FINISHED
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from batchcore.core.logging import get_logger
from batchcore.domain.execution import ExecutionContext, JobExecution, StepExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import ExitStatus
from batchcore.orchestration.exceptions import MissingParameterError
from batchcore.orchestration.step_types import Step


def resolve_parameters(step: Step, parameters: ParameterSet) -> Mapping[str, Any]:
    """Resolve the parameters a step references (read-only view)."""
    if not step.parameters and not step.required_parameters:
        return MappingProxyType(dict(parameters))

    resolved: dict[str, Any] = {}
    for name in step.parameters:
        value = parameters.get(name)
        if value is None and name in step.required_parameters:
            raise MissingParameterError(step.name, name)
        resolved[name] = value
    return MappingProxyType(resolved)


class StepContext:
    """Everything a step body may read or update during one execution."""

    def __init__(
        self,
        step: Step,
        job_execution: JobExecution,
        step_execution: StepExecution,
        stop_check: Callable[[], bool],
    ) -> None:
        self.step = step
        self.job_execution = job_execution
        self.step_execution = step_execution
        self.parameters = resolve_parameters(step, job_execution.parameters)
        self._stop_check = stop_check
        self.logger = get_logger("batchcore.step").bind(
            job=job_execution.job_name,
            step=step.name,
            execution_id=job_execution.execution_id,
        )

    @property
    def step_name(self) -> str:
        return self.step.name

    @property
    def job_name(self) -> str:
        return self.job_execution.job_name

    @property
    def job_parameters(self) -> ParameterSet:
        return self.job_execution.parameters

    @property
    def execution_context(self) -> ExecutionContext:
        return self.step_execution.execution_context

    @property
    def stop_requested(self) -> bool:
        return self._stop_check()

    def set_exit_status(self, exit_code: str, description: str = "") -> None:
        """Override the exit code conditional transitions will match on."""
        self.step_execution.exit_status = ExitStatus(exit_code, description)

    def __repr__(self) -> str:
        return f"StepContext(job={self.job_name!r}, step={self.step_name!r})"
