"""
Structured error types for the batch engine.

Every error raised by batch-core carries a category, a retryable flag, a
structured context and an optional chained cause, so that launchers,
the CLI and log aggregation can classify failures without string matching.

Architecture:
    ::

        BatchError (category, retryable, context, cause)
          ├── ParameterError          VALIDATION  bad name(type)=value input
          ├── StorageError            STORAGE     repository failure
          │     └── ExecutionNotFoundError
          ├── ExecutionStateError     ORCHESTRATION  illegal record mutation
          └── OrchestrationError      ORCHESTRATION
                └── see batchcore.orchestration.exceptions

    Step failures never escape ``ExecutionEngine.run``; they are recorded on
    the StepExecution and the JobExecution. Launch-policy and definition
    errors are raised to the caller before any step runs.

Examples:
    >>> error = ParameterError("bad notation").with_context(job="simpleJob")
    >>> error.context.job
    'simpleJob'
    >>> error.to_dict()["category"]
    'VALIDATION'

Tags:
    error-handling, exception-hierarchy, batch-core
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse classification used in logs, events and CLI output."""

    DEFINITION = "DEFINITION"
    VALIDATION = "VALIDATION"
    STEP = "STEP"
    ORCHESTRATION = "ORCHESTRATION"
    STORAGE = "STORAGE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Where an error happened: job, step, execution and instance ids."""

    job: str | None = None
    step: str | None = None
    execution_id: str | None = None
    instance_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            key: value
            for key in ("job", "step", "execution_id", "instance_id")
            if (value := getattr(self, key)) is not None
        }
        result.update(self.metadata)
        return result


class BatchError(Exception):
    """
    Base exception for all batch-core errors.

    Subclasses pick their ``default_category``; ``retryable`` marks errors
    where repeating the same operation may succeed (a locked database, a
    flaky writer), which the CLI and callers use to decide on a restart.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BatchError:
        """Attach context fields and return ``self`` (for ``raise ... .with_context(...)``).

        Known ErrorContext fields are set directly; anything else lands in
        ``metadata``.
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if context := self.context.to_dict():
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ParameterError(BatchError):
    """Malformed job parameter (bad notation, unknown type, bad value)."""

    default_category = ErrorCategory.VALIDATION


class StorageError(BatchError):
    """Execution repository failure."""

    default_category = ErrorCategory.STORAGE


class ExecutionNotFoundError(StorageError):
    """Raised when an execution id is unknown to the repository."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Job execution not found: {execution_id}")


class ExecutionStateError(BatchError):
    """Raised when an execution record is mutated in a state that forbids it."""

    default_category = ErrorCategory.ORCHESTRATION


class OrchestrationError(BatchError):
    """Base for job definition, launch and step failures."""

    default_category = ErrorCategory.ORCHESTRATION


def categorize_error(error: BaseException) -> ErrorCategory:
    """Category of any exception, including ones raised by application code."""
    if isinstance(error, BatchError):
        return error.category
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    if isinstance(error, (KeyError, AttributeError, ImportError)):
        return ErrorCategory.CONFIG
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BatchError",
    "ParameterError",
    "StorageError",
    "ExecutionNotFoundError",
    "ExecutionStateError",
    "OrchestrationError",
    "categorize_error",
]
