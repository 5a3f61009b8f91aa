"""Job definition — named, ordered composition of steps with transition rules.

The ``JobDefinition`` is the blueprint: it declares **what** to run and in
what order, never **how** (that is ``ExecutionEngine``'s job). It is
immutable and validated at construction time.

ARCHITECTURE
────────────
::

    JobDefinition
      ├── steps[]          ── ordered StepUnits (tasklet / chunk / split)
      ├── transitions[]    ── conditional routing on a step's exit code
      ├── restartable      ── may a FAILED/STOPPED run be restarted
      └── incrementer      ── always start a new instance (RunIdIncrementer)

    Routing after a step finishes:
      STOPPED                     → STOP the job
      step has transitions        → most specific matching pattern wins;
                                    no match → FAIL
      step has no transitions     → COMPLETED: next step in order (END after last)
                                    otherwise: FAIL

    Transition targets: a top-level step name, END, FAIL or STOP.

Example::

    from batchcore.orchestration import Step, Transition, job

    simple = job(
        "simpleJob",
        Step.tasklet("simpleStep1", step1, parameters=("requestDate",)),
        Step.tasklet("simpleStep2", step2, parameters=("requestDate",)),
    )

    branching = job(
        "importJob",
        Step.tasklet("load", load),
        Step.tasklet("report", report),
        Step.tasklet("cleanup", cleanup),
        transitions=[
            Transition("load", on="FAILED", to="cleanup"),
            Transition("load", on="*", to="report"),
            Transition("report", on="*", to=END),
        ],
    )

Tags:
    batch-core, orchestration, job, transitions, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import fnmatch
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from batchcore.domain.parameters import RunIdIncrementer
from batchcore.domain.status import BatchStatus, ExitStatus
from batchcore.orchestration.exceptions import JobDefinitionError
from batchcore.orchestration.step_types import Step, definition_signature

END = "END"
FAIL = "FAIL"
STOP = "STOP"
_RESERVED = frozenset({END, FAIL, STOP})


@dataclass(frozen=True)
class Transition:
    """Route from ``from_step`` to ``to`` when the exit code matches ``on``.

    ``on`` is a glob pattern over the exit code: ``*`` matches any run of
    characters, ``?`` exactly one.
    """

    from_step: str
    on: str = "*"
    to: str = END

    def matches(self, exit_code: str) -> bool:
        return fnmatch.fnmatchcase(exit_code, self.on)

    @property
    def specificity(self) -> tuple[int, int, int]:
        # lower sorts first: fewer '*', then fewer '?', then longer pattern
        return (self.on.count("*"), self.on.count("?"), -len(self.on))


@dataclass(frozen=True)
class JobDefinition:
    """
    A named job with ordered steps.

    Attributes:
        name: Unique job name (e.g., "simpleJob")
        steps: Ordered steps to execute
        transitions: Conditional routing rules (empty = strictly sequential)
        restartable: Whether FAILED/STOPPED executions can be restarted
        incrementer: Adds a run id so every launch is a new instance
        description: Human-readable description
    """

    name: str
    steps: tuple[Step, ...]
    transitions: tuple[Transition, ...] = ()
    restartable: bool = True
    incrementer: RunIdIncrementer | None = None
    description: str = ""
    _index: dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "transitions", tuple(self.transitions))
        self._validate_steps()
        self._validate_transitions()
        self._validate_reachable()

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_steps(self) -> None:
        if not self.name:
            raise JobDefinitionError("Job name must not be empty")
        if not self.steps:
            raise JobDefinitionError(f"Job '{self.name}' has no steps", job_name=self.name)

        seen: set[str] = set()
        for step in self.steps:
            for step_name in step.all_step_names():
                if step_name in _RESERVED:
                    raise JobDefinitionError(f"Step name '{step_name}' is reserved", job_name=self.name)
                if step_name in seen:
                    raise JobDefinitionError(f"Duplicate step name: {step_name}", job_name=self.name)
                seen.add(step_name)

        self._index.update({step.name: i for i, step in enumerate(self.steps)})

    def _validate_transitions(self) -> None:
        for transition in self.transitions:
            if transition.from_step not in self._index:
                raise JobDefinitionError(
                    f"Transition references unknown step: {transition.from_step}", job_name=self.name
                )
            if transition.to not in self._index and transition.to not in _RESERVED:
                raise JobDefinitionError(
                    f"Transition from '{transition.from_step}' targets unknown step: {transition.to}",
                    job_name=self.name,
                )

    def _validate_reachable(self) -> None:
        """Breadth-first walk from the first step over every possible route."""
        visited: set[str] = set()
        queue: deque[str] = deque([self.steps[0].name])
        while queue:
            name = queue.popleft()
            if name in visited:
                continue
            visited.add(name)
            for target in self.possible_targets(name):
                if target not in _RESERVED and target not in visited:
                    queue.append(target)

        unreachable = [s.name for s in self.steps if s.name not in visited]
        if unreachable:
            raise JobDefinitionError(f"Unreachable steps: {unreachable}", job_name=self.name)

    # =========================================================================
    # Routing
    # =========================================================================

    def transitions_from(self, step_name: str) -> list[Transition]:
        matching = [t for t in self.transitions if t.from_step == step_name]
        return sorted(matching, key=lambda t: t.specificity)

    def possible_targets(self, step_name: str) -> list[str]:
        explicit = self.transitions_from(step_name)
        if explicit:
            return [t.to for t in explicit]
        return [self._sequential_next(step_name)]

    def next_step(self, step_name: str, status: BatchStatus, exit_status: ExitStatus) -> str:
        """Decide what follows ``step_name``: a step name, END, FAIL or STOP."""
        if status == BatchStatus.STOPPED:
            return STOP

        explicit = self.transitions_from(step_name)
        if explicit:
            for transition in explicit:
                if transition.matches(exit_status.exit_code):
                    return transition.to
            return FAIL

        if status == BatchStatus.COMPLETED:
            return self._sequential_next(step_name)
        return FAIL

    def _sequential_next(self, step_name: str) -> str:
        index = self._index[step_name]
        if index + 1 < len(self.steps):
            return self.steps[index + 1].name
        return END

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_step(self, name: str) -> Step | None:
        index = self._index.get(name)
        return self.steps[index] if index is not None else None

    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]

    @property
    def first_step(self) -> Step:
        return self.steps[0]

    @property
    def signature(self) -> str:
        return definition_signature(self.steps)

    def has_transitions(self) -> bool:
        return bool(self.transitions)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display."""
        result: dict[str, Any] = {
            "name": self.name,
            "steps": [s.to_dict() for s in self.steps],
            "restartable": self.restartable,
        }
        if self.transitions:
            result["transitions"] = [
                {"from": t.from_step, "on": t.on, "to": t.to} for t in self.transitions
            ]
        if self.incrementer is not None:
            result["incrementer"] = self.incrementer.key
        if self.description:
            result["description"] = self.description
        return result

    def __repr__(self) -> str:
        return f"JobDefinition({self.name!r}, steps={len(self.steps)})"


def job(
    name: str,
    *steps: Step,
    transitions: Iterable[Transition] = (),
    restartable: bool = True,
    incrementer: RunIdIncrementer | None = None,
    description: str = "",
) -> JobDefinition:
    """Build and validate a :class:`JobDefinition`.

    Raises:
        JobDefinitionError: On duplicate/reserved step names, unknown
            transition endpoints or unreachable steps.
    """
    return JobDefinition(
        name=name,
        steps=tuple(steps),
        transitions=tuple(transitions),
        restartable=restartable,
        incrementer=incrementer,
        description=description,
    )
