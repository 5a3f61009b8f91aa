"""Step Types — definitions for job step variants.

A job is an ordered list of steps, and steps come in three flavours:
tasklet (custom repeatable unit of work), chunk (reader → processor →
writer with a commit interval) and split (parallel flows joined before the
next step). This module defines the immutable ``Step`` dataclass and its
factory methods so that job authors never deal with raw internals.

ARCHITECTURE
────────────
::

    Step
      ├── .tasklet(name, fn)                         ── fn(ctx) -> RepeatStatus
      ├── .chunk(name, reader, writer, processor=…)  ── chunk-oriented processing
      └── .split(name, flows)                        ── parallel flows, joined

    StepType      ── enum: TASKLET, CHUNK, SPLIT
    RepeatStatus  ── CONTINUE or FINISHED (tasklet repeat signal)
    RetryPolicy   ── attempts per chunk before failing the step
    SkipPolicy    ── skippable exceptions + skip limit

Related modules:
    item_io.py       — reader/processor/writer contracts
    step_runner.py   — executes tasklet and chunk steps
    job.py           — JobDefinition that contains the steps

Example::

    from batchcore.orchestration import Step, RepeatStatus

    def hello(ctx):
        ctx.logger.info("step.hello", request_date=ctx.parameters.get("requestDate"))
        return RepeatStatus.FINISHED

    Step.tasklet("simpleStep1", hello, parameters=("requestDate",))
    Step.chunk("copy", reader=[1, 2, 3], processor=lambda x: x * 2, writer=writer, chunk_size=2)
    Step.chunk(
        "load",
        reader=lambda ctx: read_rows(ctx.parameters["day"]),
        writer=step_scoped(lambda ctx: TableWriter(ctx.parameters["day"])),
        parameters=("day",),
    )

Tags:
    batch-core, orchestration, step-types, tasklet, chunk, split

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from batchcore.core.hashing import compute_hash
from batchcore.orchestration.item_io import (
    ComponentFactory,
    ItemProcessor,
    ItemReader,
    ItemWriter,
    StepScoped,
    processor_provider,
    reader_provider,
    writer_provider,
)

if TYPE_CHECKING:
    from batchcore.orchestration.step_context import StepContext


def resolve_callable_ref(ref: str) -> Any:
    """Import and return the object identified by ``'module:qualname'``.

    Raises:
        ValueError: If the ref has no ``':'``.
        ImportError: If the module cannot be found.
        AttributeError: If the qualname path is invalid.
    """
    import importlib

    module_path, _, attr_path = ref.partition(":")
    if not attr_path:
        raise ValueError(f"Invalid callable ref (missing ':'): {ref!r}")
    obj: Any = importlib.import_module(module_path)
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    return obj


class StepType(str, Enum):
    """Type of job step."""

    TASKLET = "tasklet"
    CHUNK = "chunk"
    SPLIT = "split"


class RepeatStatus(str, Enum):
    """Tasklet repeat signal."""

    CONTINUE = "CONTINUE"  # call the tasklet again
    FINISHED = "FINISHED"  # step done


TaskletFn = Callable[["StepContext"], "RepeatStatus | None"]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration for a chunk step.

    A failing chunk is re-processed and re-written from its buffered items
    up to ``max_attempts`` times in total before the step fails.
    """

    max_attempts: int = 3
    retryable: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")

    def can_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and isinstance(error, self.retryable)


@dataclass(frozen=True)
class SkipPolicy:
    """
    Skip configuration for a chunk step.

    Read and process failures of a ``skippable`` type are counted and the
    item is dropped; the ``skip_limit + 1``-th skip fails the step.
    """

    skip_limit: int = 0
    skippable: tuple[type[BaseException], ...] = (Exception,)

    def should_skip(self, error: BaseException) -> bool:
        return isinstance(error, self.skippable)


@dataclass(frozen=True)
class Step:
    """
    A single step within a job.

    Use the factory methods to create specific step types:
    - Step.tasklet() for custom logic
    - Step.chunk() for read-process-write pipelines
    - Step.split() for parallel flows

    Common attributes:
        name: Unique (within the job) step name
        parameters: Launch parameters resolved into the StepContext
        required_parameters: Parameters whose absence fails the step
        allow_start_if_complete: Re-run on restart even if it completed before
        start_limit: Max number of starts across a job instance (None = unbounded)
    """

    name: str
    step_type: StepType
    parameters: tuple[str, ...] = ()
    required_parameters: tuple[str, ...] = ()
    allow_start_if_complete: bool = False
    start_limit: int | None = None

    # Tasklet
    tasklet_fn: TaskletFn | None = None

    # Chunk: providers called once per StepExecution
    reader_factory: ComponentFactory | None = None
    processor_factory: ComponentFactory | None = None
    writer_factory: ComponentFactory | None = None
    chunk_size: int | None = None
    retry_policy: RetryPolicy | None = None
    skip_policy: SkipPolicy | None = None

    # Split
    flows: tuple[tuple[Step, ...], ...] = field(default_factory=tuple)
    max_workers: int | None = None

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def tasklet(
        cls,
        name: str,
        fn: TaskletFn,
        *,
        parameters: Iterable[str] = (),
        required_parameters: Iterable[str] = (),
        allow_start_if_complete: bool = False,
        start_limit: int | None = None,
    ) -> Step:
        """Create a tasklet step running ``fn(ctx)`` until it returns FINISHED."""
        if not callable(fn):
            raise TypeError(f"Tasklet for step '{name}' must be callable")
        required = tuple(required_parameters)
        return cls(
            name=name,
            step_type=StepType.TASKLET,
            tasklet_fn=fn,
            parameters=_merge_names(parameters, required),
            required_parameters=required,
            allow_start_if_complete=allow_start_if_complete,
            start_limit=start_limit,
        )

    @classmethod
    def chunk(
        cls,
        name: str,
        *,
        reader: ItemReader | Sequence[Any] | Iterable[Any] | ComponentFactory,
        writer: ItemWriter | Callable[[Sequence[Any]], None] | StepScoped,
        processor: ItemProcessor | Callable[[Any], Any] | StepScoped | None = None,
        chunk_size: int | None = None,
        retry_policy: RetryPolicy | None = None,
        skip_policy: SkipPolicy | None = None,
        parameters: Iterable[str] = (),
        required_parameters: Iterable[str] = (),
        allow_start_if_complete: bool = False,
        start_limit: int | None = None,
    ) -> Step:
        """Create a chunk-oriented step.

        ``reader`` may be a sequence (re-read from the start by every step
        execution), an ItemReader, or a factory ``fn(ctx)`` returning either.
        Wrap processor and writer factories in ``step_scoped``. Factories see
        the resolved ``ctx.parameters``, and their components belong to a
        single StepExecution. One-shot iterators are rejected.

        ``chunk_size`` defaults to ``BatchSettings.default_chunk_size`` at
        run time when left unset.
        """
        if chunk_size is not None and chunk_size < 1:
            raise ValueError(f"chunk_size for step '{name}' must be >= 1")
        required = tuple(required_parameters)
        return cls(
            name=name,
            step_type=StepType.CHUNK,
            reader_factory=reader_provider(reader),
            processor_factory=processor_provider(processor),
            writer_factory=writer_provider(writer),
            chunk_size=chunk_size,
            retry_policy=retry_policy,
            skip_policy=skip_policy,
            parameters=_merge_names(parameters, required),
            required_parameters=required,
            allow_start_if_complete=allow_start_if_complete,
            start_limit=start_limit,
        )

    @classmethod
    def split(
        cls,
        name: str,
        flows: Iterable[Step | Iterable[Step]],
        *,
        max_workers: int | None = None,
    ) -> Step:
        """Create a split running each flow on its own worker thread.

        Each flow is a step or an ordered sequence of steps. The split
        completes when every flow has finished.
        """
        normalized: list[tuple[Step, ...]] = []
        for flow in flows:
            normalized.append((flow,) if isinstance(flow, Step) else tuple(flow))
        if not normalized:
            raise ValueError(f"Split '{name}' needs at least one flow")
        return cls(
            name=name,
            step_type=StepType.SPLIT,
            flows=tuple(normalized),
            max_workers=max_workers,
        )

    # =========================================================================
    # Introspection
    # =========================================================================

    def all_step_names(self) -> list[str]:
        """This step's name plus every nested flow step name."""
        names = [self.name]
        for flow in self.flows:
            for step in flow:
                names.extend(step.all_step_names())
        return names

    def signature(self) -> str:
        """Layout fingerprint used to detect incompatible restarts."""
        if self.step_type == StepType.SPLIT:
            inner = ";".join(",".join(s.signature() for s in flow) for flow in self.flows)
            return f"{self.name}:{self.step_type.value}[{inner}]"
        return f"{self.name}:{self.step_type.value}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display (callables are not serialized)."""
        result: dict[str, Any] = {"name": self.name, "type": self.step_type.value}
        if self.parameters:
            result["parameters"] = list(self.parameters)
        if self.required_parameters:
            result["required_parameters"] = list(self.required_parameters)
        if self.step_type == StepType.CHUNK:
            result["chunk_size"] = self.chunk_size
            if self.retry_policy:
                result["retry_attempts"] = self.retry_policy.max_attempts
            if self.skip_policy:
                result["skip_limit"] = self.skip_policy.skip_limit
        if self.step_type == StepType.SPLIT:
            result["flows"] = [[s.to_dict() for s in flow] for flow in self.flows]
        if self.allow_start_if_complete:
            result["allow_start_if_complete"] = True
        if self.start_limit is not None:
            result["start_limit"] = self.start_limit
        return result

    def __repr__(self) -> str:
        return f"Step({self.name!r}, type={self.step_type.value})"


def definition_signature(steps: Sequence[Step]) -> str:
    """Hash of the ordered step layout of a job."""
    return compute_hash(*(s.signature() for s in steps))


def _merge_names(first: Iterable[str], second: Iterable[str]) -> tuple[str, ...]:
    names: list[str] = []
    for name in [*first, *second]:
        if name not in names:
            names.append(name)
    return tuple(names)
