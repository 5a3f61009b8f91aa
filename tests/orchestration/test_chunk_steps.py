"""Tests for chunk-oriented steps: commit intervals, filtering, retry, skip, streams."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from batchcore.domain.status import BatchStatus
from batchcore.orchestration import (
    EventType,
    ExecutionEngine,
    ListItemWriter,
    RetryPolicy,
    SkipPolicy,
    Step,
    job,
    step_scoped,
)


class FlakyWriter(ListItemWriter):
    """Fails on the listed write calls (1-based), then behaves normally."""

    def __init__(self, fail_on=(), error=IOError):
        super().__init__()
        self.fail_on = set(fail_on)
        self.error = error
        self.calls = 0

    def write(self, items):
        self.calls += 1
        if self.calls in self.fail_on:
            raise self.error(f"write {self.calls} failed")
        super().write(items)


class ScriptedReader:
    """Returns the scripted values in order; exception instances are raised."""

    def __init__(self, script):
        self._script = list(script)

    def read(self):
        if not self._script:
            return None
        value = self._script.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class TrackingWriter(ListItemWriter):
    def __init__(self):
        super().__init__()
        self.lifecycle = []

    def open(self, execution_context):
        self.lifecycle.append("open")

    def update(self, execution_context):
        self.lifecycle.append("update")
        execution_context["tracking.chunks"] = len(self.chunks)

    def close(self):
        self.lifecycle.append("close")


def _run(engine, step):
    execution = engine.run(job("chunkJob", step))
    return execution, execution.step_executions[0]


# ---------------------------------------------------------------------------
# Commit intervals
# ---------------------------------------------------------------------------


class TestCommitInterval:
    @pytest.mark.parametrize(
        ("items", "size", "commits"),
        [(10, 3, 4), (9, 3, 3), (1, 5, 1), (5, 1, 5)],
    )
    def test_one_commit_per_chunk(self, engine, items, size, commits):
        writer = ListItemWriter()
        _, step = _run(engine, Step.chunk("copy", reader=list(range(items)), writer=writer, chunk_size=size))

        assert step.status == BatchStatus.COMPLETED
        assert step.commit_count == commits
        assert step.read_count == step.write_count == items
        assert writer.written == list(range(items))
        assert all(len(chunk) <= size for chunk in writer.chunks)

    def test_empty_input_completes_without_commits(self, engine):
        writer = ListItemWriter()
        _, step = _run(engine, Step.chunk("empty", reader=[], writer=writer, chunk_size=3))
        assert step.status == BatchStatus.COMPLETED
        assert step.commit_count == 0
        assert writer.chunks == []

    def test_default_chunk_size_from_settings(self, repository):
        from batchcore.core.settings import BatchSettings

        engine = ExecutionEngine(repository, settings=BatchSettings(default_chunk_size=4))
        writer = ListItemWriter()
        _, step = _run(engine, Step.chunk("copy", reader=list(range(10)), writer=writer))
        assert [len(c) for c in writer.chunks] == [4, 4, 2]
        assert step.commit_count == 3

    def test_chunk_committed_events(self, engine, events):
        _run(engine, Step.chunk("copy", reader=list(range(5)), writer=ListItemWriter(), chunk_size=2))
        commits = [e.detail for e in events if e.event_type == EventType.CHUNK_COMMITTED]
        assert [c["commit"] for c in commits] == [1, 2, 3]
        assert [c["write_count"] for c in commits] == [2, 4, 5]


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestProcessing:
    def test_processor_transforms_items(self, engine):
        writer = ListItemWriter()
        _run(engine, Step.chunk("double", reader=[1, 2, 3], processor=lambda x: x * 2, writer=writer))
        assert writer.written == [2, 4, 6]

    def test_none_filters_item(self, engine):
        writer = ListItemWriter()
        _, step = _run(
            engine,
            Step.chunk(
                "evens",
                reader=list(range(1, 11)),
                processor=lambda x: x if x % 2 == 0 else None,
                writer=writer,
                chunk_size=3,
            ),
        )
        assert writer.written == [2, 4, 6, 8, 10]
        assert (step.read_count, step.filter_count, step.write_count) == (10, 5, 5)

    def test_chunk_of_filtered_items_skips_writer(self, engine):
        writer = FlakyWriter(fail_on={1})
        _, step = _run(
            engine,
            Step.chunk("drop", reader=[1, 3, 5], processor=lambda x: None, writer=writer, chunk_size=3),
        )
        assert step.status == BatchStatus.COMPLETED
        assert writer.calls == 0
        assert step.commit_count == 1


# ---------------------------------------------------------------------------
# Failure + retry
# ---------------------------------------------------------------------------


class TestWriteFailure:
    def test_failed_chunk_keeps_earlier_commits(self, engine, repository):
        writer = FlakyWriter(fail_on={3})
        execution, step = _run(engine, Step.chunk("copy", reader=list(range(10)), writer=writer, chunk_size=3))

        assert execution.status == BatchStatus.FAILED
        assert step.status == BatchStatus.FAILED
        assert writer.written == list(range(6))
        assert (step.read_count, step.write_count, step.commit_count) == (6, 6, 2)
        assert step.rollback_count == 1

        stored = repository.get_job_execution(execution.execution_id).step_executions[0]
        assert stored.write_count == 6
        assert stored.rollback_count == 1

    def test_retry_recovers_transient_failure(self, engine):
        processed = []
        writer = FlakyWriter(fail_on={2})

        def track(item):
            processed.append(item)
            return item

        _, step = _run(
            engine,
            Step.chunk(
                "copy",
                reader=list(range(6)),
                processor=track,
                writer=writer,
                chunk_size=3,
                retry_policy=RetryPolicy(max_attempts=2, retryable=(IOError,)),
            ),
        )
        assert step.status == BatchStatus.COMPLETED
        assert writer.written == list(range(6))
        assert step.rollback_count == 1
        assert step.write_count == 6
        assert processed == [0, 1, 2, 3, 4, 5, 3, 4, 5]

    def test_retry_gives_up_after_max_attempts(self, engine):
        writer = FlakyWriter(fail_on={1, 2, 3})
        _, step = _run(
            engine,
            Step.chunk(
                "copy",
                reader=[1, 2],
                writer=writer,
                retry_policy=RetryPolicy(max_attempts=3),
            ),
        )
        assert step.status == BatchStatus.FAILED
        assert step.rollback_count == 3
        assert step.write_count == 0

    def test_non_retryable_error_fails_at_once(self, engine):
        writer = FlakyWriter(fail_on={1}, error=KeyError)
        _, step = _run(
            engine,
            Step.chunk(
                "copy",
                reader=[1, 2],
                writer=writer,
                retry_policy=RetryPolicy(max_attempts=5, retryable=(IOError,)),
            ),
        )
        assert step.status == BatchStatus.FAILED
        assert writer.calls == 1
        assert step.rollback_count == 1


# ---------------------------------------------------------------------------
# Skip
# ---------------------------------------------------------------------------


def _reject_3_and_7(item):
    if item in (3, 7):
        raise ValueError(f"bad item {item}")
    return item


class TestSkip:
    def test_process_skips_within_limit(self, engine):
        writer = ListItemWriter()
        _, step = _run(
            engine,
            Step.chunk(
                "copy",
                reader=list(range(1, 11)),
                processor=_reject_3_and_7,
                writer=writer,
                chunk_size=4,
                skip_policy=SkipPolicy(skip_limit=2, skippable=(ValueError,)),
            ),
        )
        assert step.status == BatchStatus.COMPLETED
        assert step.process_skip_count == 2
        assert step.write_count == 8
        assert 3 not in writer.written and 7 not in writer.written

    def test_skip_limit_exceeded_fails_step(self, engine):
        execution, step = _run(
            engine,
            Step.chunk(
                "copy",
                reader=list(range(1, 11)),
                processor=_reject_3_and_7,
                writer=ListItemWriter(),
                skip_policy=SkipPolicy(skip_limit=1, skippable=(ValueError,)),
            ),
        )
        assert execution.status == BatchStatus.FAILED
        assert step.status == BatchStatus.FAILED
        assert "skip limit of 1 exceeded" in step.exit_status.exit_description
        assert step.write_count == 0
        assert step.rollback_count == 1

    def test_read_errors_can_be_skipped(self, engine):
        writer = ListItemWriter()
        reader = ScriptedReader([1, ValueError("garbled"), 2, 3])
        _, step = _run(
            engine,
            Step.chunk(
                "read",
                reader=reader,
                writer=writer,
                chunk_size=2,
                skip_policy=SkipPolicy(skip_limit=1, skippable=(ValueError,)),
            ),
        )
        assert step.status == BatchStatus.COMPLETED
        assert writer.written == [1, 2, 3]
        assert step.read_skip_count == 1
        assert step.read_count == 3

    def test_unskippable_read_error_fails(self, engine):
        reader = ScriptedReader([1, KeyError("broken")])
        _, step = _run(
            engine,
            Step.chunk(
                "read",
                reader=reader,
                writer=ListItemWriter(),
                skip_policy=SkipPolicy(skip_limit=5, skippable=(ValueError,)),
            ),
        )
        assert step.status == BatchStatus.FAILED
        assert step.rollback_count == 1
        assert step.read_count == 0


# ---------------------------------------------------------------------------
# Item streams
# ---------------------------------------------------------------------------


class TestItemStreams:
    def test_lifecycle_and_context(self, engine):
        writer = TrackingWriter()
        _, step = _run(engine, Step.chunk("copy", reader=list(range(4)), writer=writer, chunk_size=2))
        assert writer.lifecycle == ["open", "update", "update", "close"]
        assert step.execution_context["tracking.chunks"] == 2

    def test_close_runs_after_failure(self, engine):
        writer = TrackingWriter()

        def explode(item):
            raise RuntimeError("processor down")

        _, step = _run(engine, Step.chunk("copy", reader=[1], processor=explode, writer=writer))
        assert step.status == BatchStatus.FAILED
        assert writer.lifecycle == ["open", "close"]


# ---------------------------------------------------------------------------
# Step scope
# ---------------------------------------------------------------------------


class TestStepScope:
    def test_concurrent_executions_keep_their_own_reader(self, engine):
        barrier = threading.Barrier(2, timeout=5)
        written, lock = {}, threading.Lock()

        def meet_on_first_item(item):
            if item.endswith("-0"):
                barrier.wait()
            return item

        def collect(ctx):
            day = ctx.parameters["day"]

            def write(items):
                with lock:
                    written.setdefault(day, []).extend(items)

            return write

        definition = job(
            "daily",
            Step.chunk(
                "load",
                reader=lambda ctx: [f"{ctx.parameters['day']}-{i}" for i in range(6)],
                processor=meet_on_first_item,
                writer=step_scoped(collect),
                chunk_size=1,
                parameters=("day",),
            ),
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = {day: pool.submit(engine.run, definition, {"day": day}) for day in ("a", "b")}
            executions = {day: future.result(timeout=30) for day, future in futures.items()}

        for day, execution in executions.items():
            assert execution.status == BatchStatus.COMPLETED
            step = execution.step_executions[0]
            assert step.read_count == step.write_count == 6
            assert written[day] == [f"{day}-{i}" for i in range(6)]

    def test_every_instance_reads_from_the_start(self, engine):
        writer = ListItemWriter()
        definition = job("reread", Step.chunk("copy", reader=lambda ctx: (i for i in range(3)), writer=writer))

        first = engine.run(definition, {"d": 1})
        second = engine.run(definition, {"d": 2})

        assert first.step_executions[0].read_count == 3
        assert second.step_executions[0].read_count == 3
        assert writer.written == [0, 1, 2, 0, 1, 2]

    def test_failing_factory_fails_the_step(self, engine):
        def broken(ctx):
            raise LookupError("no source for today")

        execution, step = _run(engine, Step.chunk("copy", reader=broken, writer=ListItemWriter()))

        assert execution.status == BatchStatus.FAILED
        assert step.status == BatchStatus.FAILED
        assert "no source for today" in execution.exit_status.exit_description
