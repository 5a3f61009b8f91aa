"""Tests for structured logging configuration."""

import io
import json

from batchcore.core.hashing import compute_hash
from batchcore.core.logging import LogContext, configure_logging, get_logger


class TestConfigureLogging:
    def test_json_output_carries_context(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, service="batch-test", stream=stream)

        with LogContext(job="simpleJob", execution_id="e1"):
            get_logger("tests").info("step.complete", step="simpleStep1", write_count=3)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "step.complete"
        assert record["job"] == "simpleJob"
        assert record["execution_id"] == "e1"
        assert record["write_count"] == 3
        assert record["service.name"] == "batch-test"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_context_is_unbound_on_exit(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)
        with LogContext(job="scoped"):
            pass
        get_logger("tests").info("after")
        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert "job" not in record

    def test_level_filters(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", json_format=True, stream=stream)
        get_logger("tests").info("hidden")
        get_logger("tests").warning("shown")
        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_console_format(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=False, add_timestamp=False, stream=stream)
        get_logger("tests").info("readable", job="simpleJob")
        assert "readable" in stream.getvalue()
        assert "simpleJob" in stream.getvalue()


class TestComputeHash:
    def test_deterministic_and_ordered(self):
        assert compute_hash("a", "b") == compute_hash("a", "b")
        assert compute_hash("a", "b") != compute_hash("b", "a")
        assert len(compute_hash("a", length=12)) == 12
