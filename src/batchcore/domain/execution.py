"""Execution records — JobInstance, JobExecution, StepExecution.

WHY
───
The engine needs a durable trace of every run to answer two questions on
relaunch: *has this (job, parameters) pair already completed?* and *which
steps still need to run?*  These records are that trace.

ARCHITECTURE
────────────
::

    JobInstance   (job_name, fingerprint)        ── identity of a run
      └── JobExecution  (one per launch/restart)
            ├── parameters, status, exit_status, timestamps
            ├── definition_signature             ── restart compatibility
            └── step_executions[]  (ordered)
                  └── StepExecution
                        ├── status, exit_status
                        ├── read / write / filter / skip / commit / rollback counts
                        └── execution_context      ── reader position for restart

Ownership:
    The engine mutates in-flight records; repositories store *snapshots*
    (``to_dict`` / ``from_dict``) so no caller ever observes a half-applied
    chunk. A JobExecution refuses mutation once its status is terminal.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from batchcore.core.errors import ExecutionStateError
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus, ExitStatus
from batchcore.domain import status as exit_codes


def _now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _new_id() -> str:
    return str(uuid.uuid4())


class ExecutionContext(dict[str, Any]):
    """String-keyed restart state persisted at every commit point."""

    def get_int(self, key: str, default: int = 0) -> int:
        return int(self.get(key, default))

    def snapshot(self) -> ExecutionContext:
        return ExecutionContext(copy.deepcopy(dict(self)))


@dataclass(frozen=True)
class JobInstance:
    """Logical run of a job: (job name, identifying parameters)."""

    job_name: str
    fingerprint: str
    instance_id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "job_name": self.job_name,
            "fingerprint": self.fingerprint,
        }


@dataclass
class StepExecution:
    """One step's run record."""

    step_name: str
    job_execution_id: str
    step_execution_id: str = field(default_factory=_new_id)
    status: BatchStatus = BatchStatus.STARTING
    exit_status: ExitStatus = exit_codes.EXECUTING
    read_count: int = 0
    write_count: int = 0
    filter_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    write_skip_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_updated: datetime | None = None
    execution_context: ExecutionContext = field(default_factory=ExecutionContext)
    failures: list[str] = field(default_factory=list)

    @property
    def skip_count(self) -> int:
        return self.read_skip_count + self.process_skip_count + self.write_skip_count

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    # -- lifecycle ---------------------------------------------------------

    def mark_started(self) -> None:
        self.status = BatchStatus.STARTED
        self.started_at = _now()
        self.last_updated = self.started_at

    def finish(self, status: BatchStatus, exit_status: ExitStatus | None = None) -> None:
        """Record the terminal status.

        A custom exit code set by the step body survives a COMPLETED finish,
        so conditional transitions can route on it.
        """
        if exit_status is None:
            custom = self.exit_status.exit_code != exit_codes.EXECUTING.exit_code
            if custom and status == BatchStatus.COMPLETED:
                exit_status = self.exit_status
            else:
                exit_status = ExitStatus.from_batch_status(status)
        self.exit_status = exit_status
        self.status = status
        self.ended_at = _now()
        self.last_updated = self.ended_at

    def add_failure(self, error: BaseException) -> None:
        self.failures.append(f"{type(error).__name__}: {error}")

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_execution_id": self.step_execution_id,
            "job_execution_id": self.job_execution_id,
            "step_name": self.step_name,
            "status": self.status.value,
            "exit_code": self.exit_status.exit_code,
            "exit_description": self.exit_status.exit_description,
            "read_count": self.read_count,
            "write_count": self.write_count,
            "filter_count": self.filter_count,
            "read_skip_count": self.read_skip_count,
            "process_skip_count": self.process_skip_count,
            "write_skip_count": self.write_skip_count,
            "commit_count": self.commit_count,
            "rollback_count": self.rollback_count,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "last_updated": _iso(self.last_updated),
            "execution_context": copy.deepcopy(dict(self.execution_context)),
            "failures": list(self.failures),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepExecution:
        return cls(
            step_name=data["step_name"],
            job_execution_id=data["job_execution_id"],
            step_execution_id=data["step_execution_id"],
            status=BatchStatus(data["status"]),
            exit_status=ExitStatus(data.get("exit_code", "UNKNOWN"), data.get("exit_description") or ""),
            read_count=data.get("read_count", 0),
            write_count=data.get("write_count", 0),
            filter_count=data.get("filter_count", 0),
            read_skip_count=data.get("read_skip_count", 0),
            process_skip_count=data.get("process_skip_count", 0),
            write_skip_count=data.get("write_skip_count", 0),
            commit_count=data.get("commit_count", 0),
            rollback_count=data.get("rollback_count", 0),
            started_at=_parse_ts(data.get("started_at")),
            ended_at=_parse_ts(data.get("ended_at")),
            last_updated=_parse_ts(data.get("last_updated")),
            execution_context=ExecutionContext(copy.deepcopy(data.get("execution_context") or {})),
            failures=list(data.get("failures") or []),
        )

    def snapshot(self) -> StepExecution:
        return StepExecution.from_dict(self.to_dict())

    def summary(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "status": self.status.value,
            "exit_code": self.exit_status.exit_code,
            "read_count": self.read_count,
            "write_count": self.write_count,
            "filter_count": self.filter_count,
            "skip_count": self.skip_count,
            "commit_count": self.commit_count,
        }


@dataclass
class JobExecution:
    """One launch (or restart) of a JobInstance."""

    instance: JobInstance
    parameters: ParameterSet
    execution_id: str = field(default_factory=_new_id)
    status: BatchStatus = BatchStatus.STARTING
    exit_status: ExitStatus = exit_codes.UNKNOWN
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_updated: datetime | None = None
    definition_signature: str = ""
    step_executions: list[StepExecution] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def job_name(self) -> str:
        return self.instance.job_name

    @property
    def instance_id(self) -> str:
        return self.instance.instance_id

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    # -- mutation (engine only) --------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise ExecutionStateError(
                f"Job execution {self.execution_id} is {self.status.value} and can no longer change"
            ).with_context(job=self.job_name, execution_id=self.execution_id)

    def create_step_execution(self, step_name: str) -> StepExecution:
        self._ensure_mutable()
        step_execution = StepExecution(step_name=step_name, job_execution_id=self.execution_id)
        with self._lock:
            self.step_executions.append(step_execution)
        return step_execution

    def mark_started(self) -> None:
        self._ensure_mutable()
        self.status = BatchStatus.STARTED
        self.started_at = _now()
        self.last_updated = self.started_at

    def mark_stopping(self) -> None:
        self._ensure_mutable()
        if self.status.is_running:
            self.status = BatchStatus.STOPPING
            self.last_updated = _now()

    def finish(self, status: BatchStatus, exit_status: ExitStatus | None = None) -> None:
        self._ensure_mutable()
        self.status = status
        self.exit_status = exit_status or ExitStatus.from_batch_status(status)
        self.ended_at = _now()
        self.last_updated = self.ended_at

    def add_failure(self, error: BaseException | str) -> None:
        message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        with self._lock:
            self.failures.append(message)

    def abandon(self) -> None:
        """Retire a FAILED/STOPPED execution so the instance cannot restart."""
        if not self.status.is_restartable:
            raise ExecutionStateError(
                f"Only FAILED or STOPPED executions can be abandoned (status={self.status.value})"
            ).with_context(job=self.job_name, execution_id=self.execution_id)
        self.status = BatchStatus.ABANDONED
        self.last_updated = _now()

    # -- queries -----------------------------------------------------------

    def get_step_execution(self, step_name: str) -> StepExecution | None:
        for step_execution in reversed(self.step_executions):
            if step_execution.step_name == step_name:
                return step_execution
        return None

    # -- serialization -----------------------------------------------------

    def to_dict(self, include_steps: bool = True) -> dict[str, Any]:
        with self._lock:
            steps = [s.to_dict() for s in self.step_executions] if include_steps else []
            failures = list(self.failures)
        return {
            "execution_id": self.execution_id,
            "instance": self.instance.to_dict(),
            "job_name": self.job_name,
            "parameters": self.parameters.to_dict(),
            "status": self.status.value,
            "exit_code": self.exit_status.exit_code,
            "exit_description": self.exit_status.exit_description,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "last_updated": _iso(self.last_updated),
            "definition_signature": self.definition_signature,
            "failures": failures,
            "step_executions": steps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobExecution:
        instance_data = data["instance"]
        return cls(
            instance=JobInstance(
                job_name=instance_data["job_name"],
                fingerprint=instance_data["fingerprint"],
                instance_id=instance_data["instance_id"],
            ),
            parameters=ParameterSet.from_dict(data.get("parameters") or {}),
            execution_id=data["execution_id"],
            status=BatchStatus(data["status"]),
            exit_status=ExitStatus(data.get("exit_code", "UNKNOWN"), data.get("exit_description") or ""),
            created_at=_parse_ts(data.get("created_at")) or _now(),
            started_at=_parse_ts(data.get("started_at")),
            ended_at=_parse_ts(data.get("ended_at")),
            last_updated=_parse_ts(data.get("last_updated")),
            definition_signature=data.get("definition_signature", ""),
            step_executions=[StepExecution.from_dict(s) for s in data.get("step_executions") or []],
            failures=list(data.get("failures") or []),
        )

    def snapshot(self) -> JobExecution:
        return JobExecution.from_dict(self.to_dict())
