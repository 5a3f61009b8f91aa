"""Execution events — the engine's observation interface.

The engine never relies on log output for observability: every status
transition is delivered as a ``JobEvent`` to the listeners registered on the
engine. ``LoggingEventListener`` renders them as structured log lines; tests
and monitoring hooks can subscribe any callable.

::

    engine = ExecutionEngine(repository, listeners=[LoggingEventListener(), events.append])

    JOB_STATUS      STARTING → STARTED → COMPLETED | FAILED | STOPPED
    STEP_STATUS     STARTED  → COMPLETED | FAILED | STOPPED   (+ resolved parameters)
    STEP_SKIPPED    step already completed in a previous execution
    CHUNK_COMMITTED one per committed chunk (running counters)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from batchcore.core.logging import get_logger
from batchcore.domain.status import BatchStatus

logger = get_logger(__name__)


class EventType(str, Enum):
    JOB_STATUS = "job_status"
    STEP_STATUS = "step_status"
    STEP_SKIPPED = "step_skipped"
    CHUNK_COMMITTED = "chunk_committed"


@dataclass(frozen=True)
class JobEvent:
    """A single observable transition."""

    event_type: EventType
    job_name: str
    execution_id: str
    status: BatchStatus | None = None
    step_name: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "job_name": self.job_name,
            "execution_id": self.execution_id,
            "status": self.status.value if self.status else None,
            "step_name": self.step_name,
            "parameters": dict(self.parameters),
            "detail": dict(self.detail),
            "timestamp": self.timestamp.isoformat(),
        }


EventListener = Callable[[JobEvent], None]


class EventEmitter:
    """Fans events out to listeners; a failing listener never aborts a run."""

    def __init__(self, listeners: Iterable[EventListener] = ()):
        self._listeners: list[EventListener] = list(listeners)

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: JobEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "event.listener_failed",
                    listener=getattr(listener, "__name__", type(listener).__name__),
                    event_type=event.event_type.value,
                )


class LoggingEventListener:
    """Renders events as structured log lines."""

    def __init__(self, name: str = "batchcore.events"):
        self._logger = get_logger(name)

    def __call__(self, event: JobEvent) -> None:
        fields: dict[str, Any] = {
            "job": event.job_name,
            "execution_id": event.execution_id,
        }
        if event.step_name:
            fields["step"] = event.step_name
        if event.status:
            fields["status"] = event.status.value
        if event.parameters:
            fields["parameters"] = event.parameters
        fields.update(event.detail)

        name = event.event_type.value
        if event.status in (BatchStatus.FAILED, BatchStatus.ABANDONED):
            self._logger.error(name, **fields)
        elif event.event_type == EventType.CHUNK_COMMITTED:
            self._logger.debug(name, **fields)
        else:
            self._logger.info(name, **fields)
