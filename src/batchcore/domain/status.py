"""Batch and exit statuses.

``BatchStatus`` is the engine-owned lifecycle of a job or step execution.
``ExitStatus`` is the outcome code transitions are matched against; it can
be customised by a tasklet (``ctx.set_exit_status(...)``) to drive
conditional flows.

::

    STARTING ─► STARTED ─┬─► COMPLETED
                         ├─► FAILED
                         └─► STOPPING ─► STOPPED

    FAILED / STOPPED ─► ABANDONED   (never restartable)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BatchStatus(str, Enum):
    """Lifecycle status of a job or step execution."""

    STARTING = "STARTING"
    STARTED = "STARTED"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_running(self) -> bool:
        return self in (BatchStatus.STARTING, BatchStatus.STARTED, BatchStatus.STOPPING)

    @property
    def is_terminal(self) -> bool:
        return self in (
            BatchStatus.COMPLETED,
            BatchStatus.FAILED,
            BatchStatus.STOPPED,
            BatchStatus.ABANDONED,
        )

    @property
    def is_unsuccessful(self) -> bool:
        return self in (BatchStatus.FAILED, BatchStatus.STOPPED, BatchStatus.ABANDONED, BatchStatus.UNKNOWN)

    @property
    def is_restartable(self) -> bool:
        return self in (BatchStatus.FAILED, BatchStatus.STOPPED)


# Higher wins when two exit statuses are combined
_SEVERITY = {
    "EXECUTING": 1,
    "COMPLETED": 2,
    "NOOP": 3,
    "STOPPED": 4,
    "FAILED": 5,
    "UNKNOWN": 6,
}


@dataclass(frozen=True)
class ExitStatus:
    """Exit code plus a free-form description."""

    exit_code: str
    exit_description: str = ""

    def and_(self, other: ExitStatus) -> ExitStatus:
        """Combine two statuses, keeping the more severe code.

        Custom codes rank between NOOP and STOPPED. Descriptions are joined.
        """
        mine = _SEVERITY.get(self.exit_code, 3.5)
        theirs = _SEVERITY.get(other.exit_code, 3.5)
        code = other.exit_code if theirs > mine else self.exit_code
        return ExitStatus(code, self._join(other.exit_description))

    def with_description(self, description: str) -> ExitStatus:
        return ExitStatus(self.exit_code, description)

    def _join(self, other: str) -> str:
        if not self.exit_description:
            return other
        if not other or other == self.exit_description:
            return self.exit_description
        return f"{self.exit_description}; {other}"

    @classmethod
    def from_batch_status(cls, status: BatchStatus) -> ExitStatus:
        mapping = {
            BatchStatus.COMPLETED: COMPLETED,
            BatchStatus.FAILED: FAILED,
            BatchStatus.STOPPED: STOPPED,
            BatchStatus.ABANDONED: FAILED,
        }
        return mapping.get(status, EXECUTING if status.is_running else UNKNOWN)

    def __str__(self) -> str:
        return self.exit_code


EXECUTING = ExitStatus("EXECUTING")
COMPLETED = ExitStatus("COMPLETED")
NOOP = ExitStatus("NOOP")
STOPPED = ExitStatus("STOPPED")
FAILED = ExitStatus("FAILED")
UNKNOWN = ExitStatus("UNKNOWN")
