"""
Orchestration — job definitions and the engine that runs them.

ARCHITECTURE
────────────
::

    JobDefinition (ordered Steps + Transitions)
      ├── Step.tasklet()   ─ repeatable custom unit of work
      ├── Step.chunk()     ─ reader → processor → writer, commit per chunk
      └── Step.split()     ─ parallel flows joined before the next step

    ExecutionEngine   ─ launch / restart / stop / abandon
    StepRunner        ─ tasklet loop and chunk commit cycle
    StepContext       ─ resolved parameters + restart state for a step body
    JobLauncher       ─ launch by registered name → JobExecutionSummary
    events            ─ JobEvent stream for listeners

MODULE MAP (recommended reading order)
──────────────────────────────────────
1. exceptions.py     ─ error hierarchy
2. item_io.py        ─ reader / processor / writer contracts
3. step_types.py     ─ Step dataclass + factory methods
4. job.py            ─ JobDefinition, Transition, routing
5. step_context.py   ─ per-step context and parameter resolution
6. events.py         ─ JobEvent, EventEmitter, LoggingEventListener
7. step_runner.py    ─ commit boundaries
8. engine.py         ─ restart rules and step walk
9. registry.py       ─ global name → JobDefinition lookup
10. launcher.py      ─ launch by name
"""

from batchcore.orchestration.engine import ExecutionEngine
from batchcore.orchestration.events import (
    EventEmitter,
    EventListener,
    EventType,
    JobEvent,
    LoggingEventListener,
)
from batchcore.orchestration.exceptions import (
    DuplicateExecutionError,
    JobDefinitionError,
    JobExecutionAlreadyRunningError,
    JobNotFoundError,
    MissingParameterError,
    RestartabilityError,
    SkipLimitExceededError,
    StartLimitExceededError,
    StepExecutionError,
)
from batchcore.orchestration.item_io import (
    CallableItemProcessor,
    CallableItemWriter,
    CompositeItemProcessor,
    ItemProcessor,
    ItemReader,
    ItemStream,
    ItemWriter,
    IteratorItemReader,
    ListItemReader,
    ListItemWriter,
    StepScoped,
    step_scoped,
)
from batchcore.orchestration.job import END, FAIL, STOP, JobDefinition, Transition, job
from batchcore.orchestration.launcher import JobExecutionSummary, JobLauncher
from batchcore.orchestration.registry import (
    clear_job_registry,
    get_job,
    list_jobs,
    load_job,
    register_job,
)
from batchcore.orchestration.step_context import StepContext
from batchcore.orchestration.step_runner import StepRunner
from batchcore.orchestration.step_types import (
    RepeatStatus,
    RetryPolicy,
    SkipPolicy,
    Step,
    StepType,
)

__all__ = [
    # Engine
    "ExecutionEngine",
    "StepRunner",
    "StepContext",
    "JobLauncher",
    "JobExecutionSummary",
    # Definitions
    "JobDefinition",
    "Transition",
    "job",
    "END",
    "FAIL",
    "STOP",
    "Step",
    "StepType",
    "RepeatStatus",
    "RetryPolicy",
    "SkipPolicy",
    # Item I/O
    "ItemReader",
    "ItemProcessor",
    "ItemWriter",
    "ItemStream",
    "ListItemReader",
    "IteratorItemReader",
    "CallableItemProcessor",
    "CompositeItemProcessor",
    "ListItemWriter",
    "CallableItemWriter",
    "StepScoped",
    "step_scoped",
    # Events
    "EventEmitter",
    "EventListener",
    "EventType",
    "JobEvent",
    "LoggingEventListener",
    # Registry
    "register_job",
    "get_job",
    "list_jobs",
    "load_job",
    "clear_job_registry",
    # Errors
    "DuplicateExecutionError",
    "JobDefinitionError",
    "JobExecutionAlreadyRunningError",
    "JobNotFoundError",
    "MissingParameterError",
    "RestartabilityError",
    "SkipLimitExceededError",
    "StartLimitExceededError",
    "StepExecutionError",
]
