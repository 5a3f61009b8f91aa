"""Item I/O — reader, processor and writer contracts for chunk steps.

ARCHITECTURE
────────────
::

    ItemReader.read()            → item | None      (None = end of input)
    ItemProcessor.process(item)  → item | None      (None = filter the item)
    ItemWriter.write(items)      → None             (raises on failure)

    ItemStream  (optional, for restartable readers/writers)
      ├── open(execution_context)    ── restore position on restart
      ├── update(execution_context)  ── called at every chunk commit
      └── close()

Stock implementations:
    ListItemReader, IteratorItemReader,
    CallableItemProcessor, CompositeItemProcessor,
    ListItemWriter, CallableItemWriter

Readers store their position in the step's ExecutionContext only at commit
points, so a restart resumes right after the last fully committed chunk.

Step scope:
    ``Step.chunk`` turns every component into a provider called once per
    StepExecution. Sequences get a fresh ``ListItemReader`` each time, and
    a factory ``fn(ctx)`` (or any callable wrapped in ``step_scoped``)
    builds new components from the StepContext, so launch parameters reach
    the reader and concurrent executions never share a cursor. Component
    instances passed directly are shared by every execution of the job.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from batchcore.domain.execution import ExecutionContext

if TYPE_CHECKING:
    from batchcore.orchestration.step_context import StepContext


@runtime_checkable
class ItemReader(Protocol):
    """Produces items one at a time; ``None`` signals the end of input."""

    def read(self) -> Any | None:
        ...


@runtime_checkable
class ItemProcessor(Protocol):
    """Transforms an item; returning ``None`` filters it out."""

    def process(self, item: Any) -> Any | None:
        ...


@runtime_checkable
class ItemWriter(Protocol):
    """Writes a whole chunk; must raise if the chunk was not written."""

    def write(self, items: Sequence[Any]) -> None:
        ...


@runtime_checkable
class ItemStream(Protocol):
    """Lifecycle hooks for components that keep restart state."""

    def open(self, execution_context: ExecutionContext) -> None:
        ...

    def update(self, execution_context: ExecutionContext) -> None:
        ...

    def close(self) -> None:
        ...


# =============================================================================
# Readers
# =============================================================================


class ListItemReader:
    """Reads from an in-memory sequence, restartable by position."""

    def __init__(self, items: Sequence[Any], name: str = "list_reader"):
        self._items = list(items)
        self._position = 0
        self._key = f"{name}.read.count"

    def open(self, execution_context: ExecutionContext) -> None:
        self._position = execution_context.get_int(self._key, 0)

    def read(self) -> Any | None:
        if self._position >= len(self._items):
            return None
        item = self._items[self._position]
        self._position += 1
        return item

    def update(self, execution_context: ExecutionContext) -> None:
        execution_context[self._key] = self._position

    def close(self) -> None:
        pass


class IteratorItemReader:
    """Reads from any iterable.

    On restart the first ``read.count`` items are consumed and discarded,
    which is correct for deterministic sources (files, sorted queries).
    A callable source is called on every ``open`` so each step execution
    gets a fresh iterator. A one-shot iterator (a generator) can back a
    single step execution only; opening it again raises ``RuntimeError``.
    """

    def __init__(self, source: Iterable[Any] | Callable[[], Iterable[Any]], name: str = "iterator_reader"):
        self._source = source
        self._one_shot = not callable(source) and is_one_shot(source)
        self._consumed = False
        self._iterator: Iterator[Any] | None = None
        self._count = 0
        self._key = f"{name}.read.count"

    def _new_iterator(self) -> Iterator[Any]:
        if self._one_shot:
            if self._consumed:
                raise RuntimeError(
                    "IteratorItemReader over a one-shot iterator cannot be reopened; "
                    "pass a callable returning a new iterable instead"
                )
            self._consumed = True
        source = self._source() if callable(self._source) else self._source
        return iter(source)

    def open(self, execution_context: ExecutionContext) -> None:
        self._iterator = self._new_iterator()
        self._count = 0
        to_skip = execution_context.get_int(self._key, 0)
        while self._count < to_skip and next(self._iterator, None) is not None:
            self._count += 1

    def read(self) -> Any | None:
        if self._iterator is None:
            self._iterator = self._new_iterator()
        item = next(self._iterator, None)
        if item is not None:
            self._count += 1
        return item

    def update(self, execution_context: ExecutionContext) -> None:
        execution_context[self._key] = self._count

    def close(self) -> None:
        self._iterator = None


# =============================================================================
# Processors
# =============================================================================


class CallableItemProcessor:
    """Adapts a plain function ``fn(item) -> item | None``."""

    def __init__(self, fn: Callable[[Any], Any | None]):
        self._fn = fn

    def process(self, item: Any) -> Any | None:
        return self._fn(item)


class CompositeItemProcessor:
    """Chains processors; a ``None`` from any stage filters the item."""

    def __init__(self, *processors: ItemProcessor | Callable[[Any], Any | None]):
        self._processors = [as_processor(p) for p in processors]

    def process(self, item: Any) -> Any | None:
        for processor in self._processors:
            item = processor.process(item)
            if item is None:
                return None
        return item


# =============================================================================
# Writers
# =============================================================================


class ListItemWriter:
    """Collects written items in memory (chunk boundaries preserved)."""

    def __init__(self) -> None:
        self.chunks: list[list[Any]] = []

    @property
    def written(self) -> list[Any]:
        return [item for chunk in self.chunks for item in chunk]

    def write(self, items: Sequence[Any]) -> None:
        self.chunks.append(list(items))


class CallableItemWriter:
    """Adapts a plain function ``fn(items) -> None``."""

    def __init__(self, fn: Callable[[Sequence[Any]], None]):
        self._fn = fn

    def write(self, items: Sequence[Any]) -> None:
        self._fn(items)


# =============================================================================
# Step scope and coercion helpers used by Step.chunk()
# =============================================================================

# called with the StepContext of the step execution
ComponentFactory = Callable[[Any], Any]


class StepScoped:
    """Wraps ``factory(ctx)`` so a new component is built for every step execution.

    Readers treat any plain callable as a factory already; processors and
    writers need the wrapper because a bare function is the component itself.
    """

    def __init__(self, factory: ComponentFactory):
        if not callable(factory):
            raise TypeError("step_scoped() needs a callable taking the StepContext")
        self.factory = factory

    def __call__(self, ctx: StepContext) -> Any:
        return self.factory(ctx)


def step_scoped(factory: ComponentFactory) -> StepScoped:
    return StepScoped(factory)


def is_one_shot(source: Any) -> bool:
    """Iterators (generators, open files) yield their items only once."""
    return isinstance(source, Iterator)


def _shared(component: Any) -> ComponentFactory:
    def provide(ctx: StepContext) -> Any:
        return component

    return provide


def as_reader(reader: ItemReader | Sequence[Any] | Iterable[Any]) -> ItemReader:
    """Adapt the reader a factory returned for one step execution."""
    if isinstance(reader, ItemReader):
        return reader
    if isinstance(reader, Sequence) and not isinstance(reader, (str, bytes)):
        return ListItemReader(reader)
    if isinstance(reader, Iterable):
        return IteratorItemReader(reader)
    raise TypeError(f"Cannot use {type(reader).__name__} as an item reader")


def as_processor(processor: ItemProcessor | Callable[[Any], Any | None] | None) -> ItemProcessor | None:
    if processor is None or isinstance(processor, ItemProcessor):
        return processor
    if callable(processor):
        return CallableItemProcessor(processor)
    raise TypeError(f"Cannot use {type(processor).__name__} as an item processor")


def as_writer(writer: ItemWriter | Callable[[Sequence[Any]], None]) -> ItemWriter:
    if isinstance(writer, ItemWriter):
        return writer
    if callable(writer):
        return CallableItemWriter(writer)
    raise TypeError(f"Cannot use {type(writer).__name__} as an item writer")


def reader_provider(reader: Any) -> ComponentFactory:
    """Provider of the reader for each step execution of a chunk step.

    Raises:
        TypeError: For a one-shot iterator, which the first execution would
            exhaust, leaving later instances and restarts with no input.
    """
    if isinstance(reader, StepScoped):
        factory = reader.factory
        return lambda ctx: as_reader(factory(ctx))
    if callable(reader) and not isinstance(reader, ItemReader):
        return lambda ctx: as_reader(reader(ctx))
    if isinstance(reader, ItemReader):
        return _shared(reader)
    if is_one_shot(reader):
        raise TypeError(
            f"A {type(reader).__name__} can only be read once; pass a factory such as "
            "`reader=lambda ctx: make_items(ctx)` so every step execution starts from a fresh source"
        )
    if isinstance(reader, Sequence) and not isinstance(reader, (str, bytes)):
        items = list(reader)
        return lambda ctx: ListItemReader(items)
    if isinstance(reader, Iterable):
        return lambda ctx: IteratorItemReader(reader)
    raise TypeError(f"Cannot use {type(reader).__name__} as an item reader")


def processor_provider(processor: Any) -> ComponentFactory | None:
    if processor is None:
        return None
    if isinstance(processor, StepScoped):
        factory = processor.factory
        return lambda ctx: as_processor(factory(ctx))
    return _shared(as_processor(processor))


def writer_provider(writer: Any) -> ComponentFactory:
    if isinstance(writer, StepScoped):
        factory = writer.factory
        return lambda ctx: as_writer(factory(ctx))
    return _shared(as_writer(writer))


def open_stream(component: Any, execution_context: ExecutionContext) -> None:
    if isinstance(component, ItemStream):
        component.open(execution_context)


def update_stream(component: Any, execution_context: ExecutionContext) -> None:
    if isinstance(component, ItemStream):
        component.update(execution_context)


def close_stream(component: Any) -> None:
    if isinstance(component, ItemStream):
        component.close()
