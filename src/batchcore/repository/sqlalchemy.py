"""SQLAlchemy-backed execution repository.

Every public method runs in its own short transaction, so each
``save_step_execution`` call is a durable commit point: a crash between two
chunk commits leaves the last fully committed chunk on disk and nothing of
the chunk in flight.

Example::

    from batchcore.repository.sqlalchemy import SqlAlchemyExecutionRepository

    repository = SqlAlchemyExecutionRepository.from_url("sqlite:///batch.db")
    engine = ExecutionEngine(repository)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from batchcore.core.errors import ExecutionNotFoundError, StorageError
from batchcore.core.logging import get_logger
from batchcore.domain.execution import ExecutionContext, JobExecution, JobInstance, StepExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus, ExitStatus
from batchcore.repository.base import ExecutionLocks, check_status_update, merge_status
from batchcore.repository.session import batch_session_factory, create_batch_engine
from batchcore.repository.tables import (
    BatchBase,
    JobExecutionTable,
    JobInstanceTable,
    StepExecutionTable,
)

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; every timestamp written by the engine is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SqlAlchemyExecutionRepository:
    """Durable :class:`~batchcore.repository.base.ExecutionRepository`."""

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self._engine = engine
        self._sessions = batch_session_factory(engine)
        self._locks = ExecutionLocks()
        if create_tables:
            BatchBase.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> SqlAlchemyExecutionRepository:
        return cls(create_batch_engine(url, **kwargs))

    @property
    def engine(self) -> Engine:
        return self._engine

    # =========================================================================
    # Writes
    # =========================================================================

    def create_job_instance(self, job_name: str, parameters: ParameterSet) -> JobInstance:
        fingerprint = parameters.fingerprint()
        existing = self._find_instance(job_name, fingerprint)
        if existing is not None:
            return existing

        instance = JobInstance(job_name=job_name, fingerprint=fingerprint)
        try:
            with self._sessions.begin() as session:
                session.add(
                    JobInstanceTable(
                        instance_id=instance.instance_id,
                        job_name=job_name,
                        fingerprint=fingerprint,
                    )
                )
        except IntegrityError:
            # created concurrently by another launcher
            existing = self._find_instance(job_name, fingerprint)
            if existing is None:
                raise
            return existing
        return instance

    def save_job_execution(self, job_execution: JobExecution) -> None:
        with self._locks.hold(job_execution.execution_id), self._transaction() as session:
            row = session.get(JobExecutionTable, job_execution.execution_id)
            status = job_execution.status
            if row is None:
                seq = (session.scalar(select(func.max(JobExecutionTable.seq))) or 0) + 1
                row = JobExecutionTable(
                    execution_id=job_execution.execution_id,
                    instance_id=job_execution.instance_id,
                    job_name=job_execution.job_name,
                    created_at=job_execution.created_at,
                    seq=seq,
                )
                session.add(row)
            else:
                status = merge_status(BatchStatus(row.status), status)

            row.status = status.value
            row.exit_code = job_execution.exit_status.exit_code
            row.exit_description = job_execution.exit_status.exit_description
            row.parameters = job_execution.parameters.to_dict()
            row.definition_signature = job_execution.definition_signature
            row.failures = list(job_execution.failures)
            row.started_at = job_execution.started_at
            row.ended_at = job_execution.ended_at
            row.last_updated = job_execution.last_updated

    def save_step_execution(self, step_execution: StepExecution) -> None:
        with self._locks.hold(step_execution.job_execution_id), self._transaction() as session:
            if session.get(JobExecutionTable, step_execution.job_execution_id) is None:
                raise ExecutionNotFoundError(step_execution.job_execution_id)

            row = session.get(StepExecutionTable, step_execution.step_execution_id)
            if row is None:
                order = session.scalar(
                    select(func.count())
                    .select_from(StepExecutionTable)
                    .where(StepExecutionTable.job_execution_id == step_execution.job_execution_id)
                ) or 0
                row = StepExecutionTable(
                    step_execution_id=step_execution.step_execution_id,
                    job_execution_id=step_execution.job_execution_id,
                    step_name=step_execution.step_name,
                    step_order=order,
                )
                session.add(row)

            row.status = step_execution.status.value
            row.exit_code = step_execution.exit_status.exit_code
            row.exit_description = step_execution.exit_status.exit_description
            row.read_count = step_execution.read_count
            row.write_count = step_execution.write_count
            row.filter_count = step_execution.filter_count
            row.read_skip_count = step_execution.read_skip_count
            row.process_skip_count = step_execution.process_skip_count
            row.write_skip_count = step_execution.write_skip_count
            row.commit_count = step_execution.commit_count
            row.rollback_count = step_execution.rollback_count
            row.execution_context = dict(step_execution.execution_context)
            row.failures = list(step_execution.failures)
            row.started_at = step_execution.started_at
            row.ended_at = step_execution.ended_at
            row.last_updated = step_execution.last_updated

    def update_job_status(self, execution_id: str, status: BatchStatus) -> None:
        with self._locks.hold(execution_id), self._transaction() as session:
            row = session.get(JobExecutionTable, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            check_status_update(execution_id, BatchStatus(row.status), status)
            row.status = status.value
            row.last_updated = datetime.now(UTC)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_job_execution(self, execution_id: str) -> JobExecution:
        with self._sessions() as session:
            row = session.get(JobExecutionTable, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            return self._load(session, row)

    def get_job_status(self, execution_id: str) -> BatchStatus:
        with self._sessions() as session:
            status = session.scalar(
                select(JobExecutionTable.status).where(JobExecutionTable.execution_id == execution_id)
            )
        if status is None:
            raise ExecutionNotFoundError(execution_id)
        return BatchStatus(status)

    def find_latest(self, job_name: str, parameters: ParameterSet) -> JobExecution | None:
        instance = self._find_instance(job_name, parameters.fingerprint())
        if instance is None:
            return None
        with self._sessions() as session:
            return self._latest_of_instance(session, instance.instance_id)

    def find_last_instance_execution(self, job_name: str) -> JobExecution | None:
        with self._sessions() as session:
            # an instance is as new as its first execution
            instance_id = session.scalar(
                select(JobExecutionTable.instance_id)
                .where(JobExecutionTable.job_name == job_name)
                .group_by(JobExecutionTable.instance_id)
                .order_by(func.min(JobExecutionTable.seq).desc())
                .limit(1)
            )
            if instance_id is None:
                return None
            return self._latest_of_instance(session, instance_id)

    def find_step_executions(self, instance_id: str, step_name: str) -> list[StepExecution]:
        with self._sessions() as session:
            rows = session.scalars(
                select(StepExecutionTable)
                .join(
                    JobExecutionTable,
                    JobExecutionTable.execution_id == StepExecutionTable.job_execution_id,
                )
                .where(
                    JobExecutionTable.instance_id == instance_id,
                    StepExecutionTable.step_name == step_name,
                )
                .order_by(JobExecutionTable.seq, StepExecutionTable.step_order)
            ).all()
            return [self._step_from_row(row) for row in rows]

    def list_job_executions(self, job_name: str | None = None, limit: int = 20) -> list[JobExecution]:
        with self._sessions() as session:
            query = select(JobExecutionTable).order_by(JobExecutionTable.seq.desc()).limit(limit)
            if job_name is not None:
                query = query.where(JobExecutionTable.job_name == job_name)
            return [self._load(session, row) for row in session.scalars(query).all()]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _transaction(self) -> Any:
        return _Transaction(self._sessions)

    def _find_instance(self, job_name: str, fingerprint: str) -> JobInstance | None:
        with self._sessions() as session:
            row = session.scalars(
                select(JobInstanceTable).where(
                    JobInstanceTable.job_name == job_name,
                    JobInstanceTable.fingerprint == fingerprint,
                )
            ).first()
            if row is None:
                return None
            return JobInstance(job_name=row.job_name, fingerprint=row.fingerprint, instance_id=row.instance_id)

    def _latest_of_instance(self, session: Any, instance_id: str) -> JobExecution | None:
        row = session.scalars(
            select(JobExecutionTable)
            .where(JobExecutionTable.instance_id == instance_id)
            .order_by(JobExecutionTable.seq.desc())
            .limit(1)
        ).first()
        return self._load(session, row) if row is not None else None

    def _load(self, session: Any, row: JobExecutionTable) -> JobExecution:
        instance_row = session.get(JobInstanceTable, row.instance_id)
        steps = session.scalars(
            select(StepExecutionTable)
            .where(StepExecutionTable.job_execution_id == row.execution_id)
            .order_by(StepExecutionTable.step_order)
        ).all()
        return JobExecution(
            instance=JobInstance(
                job_name=instance_row.job_name,
                fingerprint=instance_row.fingerprint,
                instance_id=instance_row.instance_id,
            ),
            parameters=ParameterSet.from_dict(row.parameters or {}),
            execution_id=row.execution_id,
            status=BatchStatus(row.status),
            exit_status=ExitStatus(row.exit_code, row.exit_description or ""),
            created_at=_aware(row.created_at),
            started_at=_aware(row.started_at),
            ended_at=_aware(row.ended_at),
            last_updated=_aware(row.last_updated),
            definition_signature=row.definition_signature,
            step_executions=[self._step_from_row(step) for step in steps],
            failures=list(row.failures or []),
        )

    @staticmethod
    def _step_from_row(row: StepExecutionTable) -> StepExecution:
        return StepExecution(
            step_name=row.step_name,
            job_execution_id=row.job_execution_id,
            step_execution_id=row.step_execution_id,
            status=BatchStatus(row.status),
            exit_status=ExitStatus(row.exit_code, row.exit_description or ""),
            read_count=row.read_count,
            write_count=row.write_count,
            filter_count=row.filter_count,
            read_skip_count=row.read_skip_count,
            process_skip_count=row.process_skip_count,
            write_skip_count=row.write_skip_count,
            commit_count=row.commit_count,
            rollback_count=row.rollback_count,
            started_at=_aware(row.started_at),
            ended_at=_aware(row.ended_at),
            last_updated=_aware(row.last_updated),
            execution_context=ExecutionContext(row.execution_context or {}),
            failures=list(row.failures or []),
        )


class _Transaction:
    """``with`` block that commits on success and wraps driver errors in StorageError."""

    def __init__(self, sessions: Any) -> None:
        self._sessions = sessions
        self._session: Any = None

    def __enter__(self) -> Any:
        self._session = self._sessions()
        self._session.begin()
        return self._session

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        try:
            if exc_type is None:
                try:
                    self._session.commit()
                except SQLAlchemyError as commit_error:
                    self._session.rollback()
                    logger.error("repository.commit_failed", error=str(commit_error))
                    raise StorageError("Execution repository commit failed", cause=commit_error) from commit_error
            else:
                self._session.rollback()
                if isinstance(exc, SQLAlchemyError):
                    raise StorageError("Execution repository write failed", cause=exc) from exc
        finally:
            self._session.close()
        return False
