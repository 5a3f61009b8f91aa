"""Execution repositories — where job and step execution records live.

``create_repository()`` picks the backend from settings: no
``BATCH_DATABASE_URL`` means an in-memory repository, anything else is a
SQLAlchemy URL.
"""

from __future__ import annotations

from batchcore.core.logging import get_logger
from batchcore.core.settings import BatchSettings, get_settings
from batchcore.repository.base import ExecutionLocks, ExecutionRepository, merge_status
from batchcore.repository.memory import InMemoryExecutionRepository
from batchcore.repository.sqlalchemy import SqlAlchemyExecutionRepository

logger = get_logger(__name__)


def create_repository(settings: BatchSettings | None = None) -> ExecutionRepository:
    """Build the repository configured by ``settings`` (default: cached settings)."""
    settings = settings or get_settings()
    if not settings.database_url:
        logger.debug("repository.create", backend="memory")
        return InMemoryExecutionRepository()
    logger.debug("repository.create", backend="sqlalchemy")
    return SqlAlchemyExecutionRepository.from_url(settings.database_url)


__all__ = [
    "ExecutionLocks",
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "SqlAlchemyExecutionRepository",
    "create_repository",
    "merge_status",
]
