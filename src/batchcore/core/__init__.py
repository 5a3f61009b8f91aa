"""Core primitives shared by every layer: errors, logging, settings, hashing."""

from batchcore.core.errors import (
    BatchError,
    ErrorCategory,
    ErrorContext,
    ExecutionNotFoundError,
    ExecutionStateError,
    OrchestrationError,
    ParameterError,
    StorageError,
)
from batchcore.core.logging import LogContext, configure_logging, get_logger
from batchcore.core.settings import BatchSettings, clear_settings_cache, get_settings

__all__ = [
    "BatchError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionNotFoundError",
    "ExecutionStateError",
    "OrchestrationError",
    "ParameterError",
    "StorageError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "BatchSettings",
    "clear_settings_cache",
    "get_settings",
]
