"""
Shared pytest fixtures for batch-core tests.

This module provides:
- Registry / settings / logging cleanup for test isolation
- Repositories (in-memory and SQLite) and an engine that records events
- Small tasklet helpers used across the engine tests
"""

from collections.abc import Generator

import pytest
import structlog

from batchcore.core.settings import BatchSettings, clear_settings_cache
from batchcore.orchestration import ExecutionEngine, JobEvent, RepeatStatus, clear_job_registry
from batchcore.repository import InMemoryExecutionRepository, SqlAlchemyExecutionRepository


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark repository and CLI tests as integration, the rest as unit."""
    for item in items:
        path = str(item.fspath)
        if "repository" in path or "cli" in path:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate() -> Generator[None, None, None]:
    clear_job_registry()
    clear_settings_cache()
    yield
    clear_job_registry()
    clear_settings_cache()
    structlog.reset_defaults()


@pytest.fixture
def settings() -> BatchSettings:
    return BatchSettings(default_chunk_size=10, max_split_workers=4)


# =============================================================================
# Repositories + engine
# =============================================================================


@pytest.fixture
def repository() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def sql_repository(tmp_path) -> SqlAlchemyExecutionRepository:
    return SqlAlchemyExecutionRepository.from_url(f"sqlite:///{tmp_path / 'batch.db'}")


@pytest.fixture
def events() -> list[JobEvent]:
    return []


@pytest.fixture
def engine(repository, events, settings) -> ExecutionEngine:
    return ExecutionEngine(repository, listeners=[events.append], settings=settings)


# =============================================================================
# Tasklet helpers
# =============================================================================


class Recorder:
    """Tasklet that records the order in which steps ran."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def __call__(self, ctx):
        self.calls.append(ctx.step_name)
        return RepeatStatus.FINISHED


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
