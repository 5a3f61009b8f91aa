"""In-memory execution repository.

Stores serialized snapshots, never live objects, so the engine's in-flight
records and the "durable" copy stay independent exactly as they would with
a database.
"""

from __future__ import annotations

import threading
from typing import Any

from batchcore.core.errors import ExecutionNotFoundError
from batchcore.domain.execution import JobExecution, JobInstance, StepExecution
from batchcore.domain.parameters import ParameterSet
from batchcore.domain.status import BatchStatus
from batchcore.repository.base import ExecutionLocks, check_status_update, merge_status


class InMemoryExecutionRepository:
    """Dictionary-backed :class:`~batchcore.repository.base.ExecutionRepository`."""

    def __init__(self) -> None:
        self._instances: dict[tuple[str, str], JobInstance] = {}
        self._executions: dict[str, dict[str, Any]] = {}
        self._order: list[str] = []
        self._guard = threading.Lock()
        self._locks = ExecutionLocks()

    def create_job_instance(self, job_name: str, parameters: ParameterSet) -> JobInstance:
        key = (job_name, parameters.fingerprint())
        with self._guard:
            instance = self._instances.get(key)
            if instance is None:
                instance = JobInstance(job_name=job_name, fingerprint=key[1])
                self._instances[key] = instance
            return instance

    def save_job_execution(self, job_execution: JobExecution) -> None:
        with self._locks.hold(job_execution.execution_id):
            data = job_execution.to_dict(include_steps=False)
            stored = self._executions.get(job_execution.execution_id)
            if stored is None:
                data["step_executions"] = []
                with self._guard:
                    self._executions[job_execution.execution_id] = data
                    self._order.append(job_execution.execution_id)
                return
            data["status"] = merge_status(BatchStatus(stored["status"]), job_execution.status).value
            data["step_executions"] = stored["step_executions"]
            self._executions[job_execution.execution_id] = data

    def save_step_execution(self, step_execution: StepExecution) -> None:
        with self._locks.hold(step_execution.job_execution_id):
            stored = self._require(step_execution.job_execution_id)
            snapshot = step_execution.to_dict()
            steps: list[dict[str, Any]] = stored["step_executions"]
            for index, existing in enumerate(steps):
                if existing["step_execution_id"] == step_execution.step_execution_id:
                    steps[index] = snapshot
                    return
            steps.append(snapshot)

    def get_job_execution(self, execution_id: str) -> JobExecution:
        with self._locks.hold(execution_id):
            return JobExecution.from_dict(self._require(execution_id))

    def get_job_status(self, execution_id: str) -> BatchStatus:
        with self._locks.hold(execution_id):
            return BatchStatus(self._require(execution_id)["status"])

    def update_job_status(self, execution_id: str, status: BatchStatus) -> None:
        with self._locks.hold(execution_id):
            data = self._require(execution_id)
            check_status_update(execution_id, BatchStatus(data["status"]), status)
            data["status"] = status.value

    def find_latest(self, job_name: str, parameters: ParameterSet) -> JobExecution | None:
        fingerprint = parameters.fingerprint()
        for data in self._newest_first():
            if data["job_name"] == job_name and data["instance"]["fingerprint"] == fingerprint:
                return self.get_job_execution(data["execution_id"])
        return None

    def find_last_instance_execution(self, job_name: str) -> JobExecution | None:
        newest = self._newest_first()
        # an instance is as new as its first execution
        instance_id = None
        seen: set[str] = set()
        for data in reversed(newest):
            if data["job_name"] == job_name and data["instance"]["instance_id"] not in seen:
                seen.add(data["instance"]["instance_id"])
                instance_id = data["instance"]["instance_id"]
        if instance_id is None:
            return None
        for data in newest:
            if data["instance"]["instance_id"] == instance_id:
                return self.get_job_execution(data["execution_id"])
        return None

    def find_step_executions(self, instance_id: str, step_name: str) -> list[StepExecution]:
        found: list[StepExecution] = []
        for data in reversed(self._newest_first()):
            if data["instance"]["instance_id"] != instance_id:
                continue
            with self._locks.hold(data["execution_id"]):
                for step in data["step_executions"]:
                    if step["step_name"] == step_name:
                        found.append(StepExecution.from_dict(step))
        return found

    def list_job_executions(self, job_name: str | None = None, limit: int = 20) -> list[JobExecution]:
        result: list[JobExecution] = []
        for data in self._newest_first():
            if job_name is None or data["job_name"] == job_name:
                result.append(self.get_job_execution(data["execution_id"]))
            if len(result) >= limit:
                break
        return result

    # -- helpers -------------------------------------------------------------

    def _require(self, execution_id: str) -> dict[str, Any]:
        data = self._executions.get(execution_id)
        if data is None:
            raise ExecutionNotFoundError(execution_id)
        return data

    def _newest_first(self) -> list[dict[str, Any]]:
        with self._guard:
            return [self._executions[eid] for eid in reversed(self._order)]
