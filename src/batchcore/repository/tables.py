"""Execution history table definitions — instances, job executions, step executions.

Tags:
    batch-core, orm, sqlalchemy, tables

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class BatchBase(DeclarativeBase):
    """Declarative base for the execution repository tables.

    ``type_annotation_map`` lets Mapped columns use plain Python types:

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``datetime.datetime`` → ``DateTime(timezone=True)``
    * ``dict`` / ``list``   → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        datetime.datetime: DateTime(timezone=True),
        dict: JSON,
        list: JSON,
    }


class JobInstanceTable(BatchBase):
    __tablename__ = "batch_job_instances"
    __table_args__ = (UniqueConstraint("job_name", "fingerprint", name="uq_batch_instance_identity"),)

    instance_id: Mapped[str] = mapped_column(Text, primary_key=True)
    job_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False)


class JobExecutionTable(BatchBase):
    __tablename__ = "batch_job_executions"

    execution_id: Mapped[str] = mapped_column(Text, primary_key=True)
    instance_id: Mapped[str] = mapped_column(
        Text, ForeignKey("batch_job_instances.instance_id"), nullable=False, index=True
    )
    job_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    exit_code: Mapped[str] = mapped_column(Text, nullable=False)
    exit_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False)
    definition_signature: Mapped[str] = mapped_column(Text, default="", nullable=False)
    failures: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime.datetime | None] = mapped_column()
    ended_at: Mapped[datetime.datetime | None] = mapped_column()
    last_updated: Mapped[datetime.datetime | None] = mapped_column()
    seq: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class StepExecutionTable(BatchBase):
    __tablename__ = "batch_step_executions"

    step_execution_id: Mapped[str] = mapped_column(Text, primary_key=True)
    job_execution_id: Mapped[str] = mapped_column(
        Text, ForeignKey("batch_job_executions.execution_id"), nullable=False, index=True
    )
    step_name: Mapped[str] = mapped_column(Text, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    exit_code: Mapped[str] = mapped_column(Text, nullable=False)
    exit_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    read_count: Mapped[int] = mapped_column(default=0, nullable=False)
    write_count: Mapped[int] = mapped_column(default=0, nullable=False)
    filter_count: Mapped[int] = mapped_column(default=0, nullable=False)
    read_skip_count: Mapped[int] = mapped_column(default=0, nullable=False)
    process_skip_count: Mapped[int] = mapped_column(default=0, nullable=False)
    write_skip_count: Mapped[int] = mapped_column(default=0, nullable=False)
    commit_count: Mapped[int] = mapped_column(default=0, nullable=False)
    rollback_count: Mapped[int] = mapped_column(default=0, nullable=False)
    execution_context: Mapped[dict] = mapped_column(JSON, nullable=False)
    failures: Mapped[list] = mapped_column(JSON, nullable=False)
    started_at: Mapped[datetime.datetime | None] = mapped_column()
    ended_at: Mapped[datetime.datetime | None] = mapped_column()
    last_updated: Mapped[datetime.datetime | None] = mapped_column()
