"""Step Runner — executes the body of tasklet and chunk steps.

The runner owns the commit boundary of a step. The engine creates the
StepExecution and the StepContext; the runner loops the tasklet or the
read → process → write cycle and saves the StepExecution at every commit
point. Chunk readers, processors and writers are obtained from the
step's providers once per StepExecution.

Chunk cycle::

    ┌── stop requested? ── yes ──► STOPPED
    │
    │   read up to chunk_size items        (skippable read errors counted)
    │   process each item                  (None → filtered, skippable → skipped)
    │   write the processed items          (one call per chunk)
    │        │ failure ─► rollback_count += 1 ─► retry? ─► StepExecutionError
    │        ▼
    │   commit: counters + ItemStream.update(execution_context) + save
    └──────────────────────────────────────────────────────────────────┘

Counters and the execution context only change in the commit block, so a
failure anywhere in the cycle leaves the persisted StepExecution exactly as
it was after the previous chunk.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from batchcore.core.logging import get_logger
from batchcore.domain.status import BatchStatus
from batchcore.orchestration.events import EventEmitter, EventType, JobEvent
from batchcore.orchestration.exceptions import SkipLimitExceededError, StepExecutionError
from batchcore.orchestration.item_io import close_stream, open_stream, update_stream
from batchcore.orchestration.step_context import StepContext
from batchcore.orchestration.step_types import RepeatStatus, StepType
from batchcore.repository.base import ExecutionRepository

logger = get_logger(__name__)


@dataclass
class _ChunkComponents:
    """Reader, processor and writer built for one StepExecution."""

    reader: Any
    processor: Any
    writer: Any

    def streams(self) -> list[Any]:
        seen: list[Any] = []
        for component in (self.reader, self.processor, self.writer):
            if component is not None and not any(component is s for s in seen):
                seen.append(component)
        return seen


@dataclass
class _ChunkOutcome:
    """What one successful process + write attempt produced."""

    written: list[Any]
    filtered: int = 0
    process_skips: int = 0


class StepRunner:
    """Runs one tasklet or chunk step to a terminal status.

    Returns COMPLETED or STOPPED; raises :class:`StepExecutionError` on
    failure (the engine records it and fails the step).
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        emitter: EventEmitter,
        default_chunk_size: int = 10,
    ) -> None:
        self._repository = repository
        self._emitter = emitter
        self._default_chunk_size = default_chunk_size

    def run(self, ctx: StepContext) -> BatchStatus:
        if ctx.step.step_type == StepType.TASKLET:
            return self.run_tasklet(ctx)
        if ctx.step.step_type == StepType.CHUNK:
            return self.run_chunk(ctx)
        raise StepExecutionError(ctx.step_name, message=f"cannot run {ctx.step.step_type.value} step directly")

    # =========================================================================
    # Tasklet
    # =========================================================================

    def run_tasklet(self, ctx: StepContext) -> BatchStatus:
        step_execution = ctx.step_execution
        fn = ctx.step.tasklet_fn
        if fn is None:
            raise StepExecutionError(ctx.step_name, message="no tasklet callable")

        while True:
            try:
                result = fn(ctx)
            except StepExecutionError:
                raise
            except Exception as e:
                raise StepExecutionError(ctx.step_name, cause=e) from e

            step_execution.commit_count += 1
            self._commit(ctx)

            if result is None or result == RepeatStatus.FINISHED:
                return BatchStatus.COMPLETED
            if result != RepeatStatus.CONTINUE:
                raise StepExecutionError(
                    ctx.step_name,
                    message=f"tasklet returned {result!r}, expected a RepeatStatus",
                )
            if ctx.stop_requested:
                logger.info("step.stop_observed", step=ctx.step_name, commits=step_execution.commit_count)
                return BatchStatus.STOPPED

    # =========================================================================
    # Chunk
    # =========================================================================

    def run_chunk(self, ctx: StepContext) -> BatchStatus:
        step = ctx.step
        if step.reader_factory is None or step.writer_factory is None:
            raise StepExecutionError(ctx.step_name, message="chunk step needs a reader and a writer")

        chunk_size = step.chunk_size or self._default_chunk_size
        try:
            chunk = _ChunkComponents(
                reader=step.reader_factory(ctx),
                processor=step.processor_factory(ctx) if step.processor_factory else None,
                writer=step.writer_factory(ctx),
            )
        except Exception as e:
            raise StepExecutionError(ctx.step_name, cause=e) from e
        components = chunk.streams()

        try:
            for component in components:
                open_stream(component, ctx.execution_context)
        except Exception as e:
            raise StepExecutionError(ctx.step_name, cause=e) from e

        try:
            while True:
                if ctx.stop_requested:
                    logger.info(
                        "step.stop_observed",
                        step=ctx.step_name,
                        commits=ctx.step_execution.commit_count,
                    )
                    return BatchStatus.STOPPED

                try:
                    items, read_skips, exhausted = self._read_chunk(ctx, chunk.reader, chunk_size)
                except StepExecutionError:
                    ctx.step_execution.rollback_count += 1
                    raise
                if items or read_skips:
                    outcome = self._process_and_write(ctx, chunk, items, pending_skips=read_skips)
                    self._commit_chunk(ctx, items, read_skips, outcome, components)
                if exhausted:
                    return BatchStatus.COMPLETED
        finally:
            for component in components:
                try:
                    close_stream(component)
                except Exception:
                    logger.exception("step.stream_close_failed", step=ctx.step_name)

    def _read_chunk(self, ctx: StepContext, reader: Any, chunk_size: int) -> tuple[list[Any], int, bool]:
        """Read up to ``chunk_size`` items; returns (items, read skips, exhausted)."""
        items: list[Any] = []
        skips = 0
        while len(items) < chunk_size:
            try:
                item = reader.read()
            except Exception as e:
                skips += 1
                self._check_skip(ctx, e, skips)
                continue
            if item is None:
                return items, skips, True
            items.append(item)
        return items, skips, False

    def _process_and_write(
        self,
        ctx: StepContext,
        chunk: _ChunkComponents,
        items: Sequence[Any],
        pending_skips: int,
    ) -> _ChunkOutcome:
        retry = ctx.step.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                outcome = self._process(ctx, chunk.processor, items, pending_skips)
                if outcome.written:
                    chunk.writer.write(list(outcome.written))
                return outcome
            except SkipLimitExceededError:
                ctx.step_execution.rollback_count += 1
                raise
            except Exception as e:
                ctx.step_execution.rollback_count += 1
                if retry is not None and retry.can_retry(e, attempt):
                    logger.warning(
                        "step.chunk_retry",
                        step=ctx.step_name,
                        attempt=attempt,
                        max_attempts=retry.max_attempts,
                        error=str(e),
                    )
                    continue
                raise StepExecutionError(ctx.step_name, cause=e) from e

    def _process(
        self,
        ctx: StepContext,
        processor: Any,
        items: Sequence[Any],
        pending_skips: int,
    ) -> _ChunkOutcome:
        if processor is None:
            return _ChunkOutcome(written=list(items))

        outcome = _ChunkOutcome(written=[])
        for item in items:
            try:
                result = processor.process(item)
            except Exception as e:
                if ctx.step.skip_policy is None or not ctx.step.skip_policy.should_skip(e):
                    raise
                outcome.process_skips += 1
                self._check_skip(ctx, e, pending_skips + outcome.process_skips)
                continue
            if result is None:
                outcome.filtered += 1
            else:
                outcome.written.append(result)
        return outcome

    def _check_skip(self, ctx: StepContext, error: Exception, pending: int) -> None:
        """Raise unless ``error`` is skippable and the limit still allows it."""
        policy = ctx.step.skip_policy
        if policy is None or not policy.should_skip(error):
            raise StepExecutionError(ctx.step_name, cause=error) from error
        if ctx.step_execution.skip_count + pending > policy.skip_limit:
            raise SkipLimitExceededError(ctx.step_name, policy.skip_limit, error) from error
        logger.debug("step.item_skipped", step=ctx.step_name, error=str(error))

    def _commit_chunk(
        self,
        ctx: StepContext,
        items: Sequence[Any],
        read_skips: int,
        outcome: _ChunkOutcome,
        components: Sequence[Any],
    ) -> None:
        step_execution = ctx.step_execution
        for component in components:
            update_stream(component, ctx.execution_context)

        step_execution.read_count += len(items)
        step_execution.read_skip_count += read_skips
        step_execution.process_skip_count += outcome.process_skips
        step_execution.filter_count += outcome.filtered
        step_execution.write_count += len(outcome.written)
        step_execution.commit_count += 1
        self._commit(ctx)

        self._emitter.emit(
            JobEvent(
                event_type=EventType.CHUNK_COMMITTED,
                job_name=ctx.job_name,
                execution_id=ctx.job_execution.execution_id,
                step_name=ctx.step_name,
                detail={
                    "commit": step_execution.commit_count,
                    "read_count": step_execution.read_count,
                    "write_count": step_execution.write_count,
                    "filter_count": step_execution.filter_count,
                    "skip_count": step_execution.skip_count,
                },
            )
        )

    def _commit(self, ctx: StepContext) -> None:
        ctx.step_execution.last_updated = datetime.now(UTC)
        self._repository.save_step_execution(ctx.step_execution)
