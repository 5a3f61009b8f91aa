"""Job Registry — global registration and discovery of job definitions.

Launchers and the CLI start jobs by name. The registry is the lookup table
that maps a name to its :class:`~batchcore.orchestration.job.JobDefinition`
so callers never need to know which module defined it.

ARCHITECTURE
────────────
::

    register_job(job_or_factory)   → stores in global dict
    get_job(name)                  → returns JobDefinition or raises
    list_jobs()                    → sorted names
    load_job("pkg.module:attr")    → import a definition (or factory) by reference
    clear_job_registry()           → reset (for testing)

    JobNotFoundError  ── raised when get_job fails

Example::

    @register_job
    def simple_job():
        return job("simpleJob", Step.tasklet("simpleStep1", step1))

    get_job("simpleJob")

Tags:
    batch-core, orchestration, registry, discovery, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable

from batchcore.core.logging import get_logger
from batchcore.orchestration.exceptions import JobNotFoundError
from batchcore.orchestration.job import JobDefinition
from batchcore.orchestration.step_types import resolve_callable_ref

logger = get_logger(__name__)

_registry: dict[str, JobDefinition] = {}


def register_job(
    job_or_factory: JobDefinition | Callable[[], JobDefinition],
    *,
    replace: bool = False,
) -> JobDefinition:
    """
    Register a job definition.

    Can be called with a JobDefinition directly, or used as a decorator on a
    zero-argument factory returning one.

    Raises:
        ValueError: If a job with the same name is already registered
            (and ``replace`` is False)
        TypeError: If the argument does not produce a JobDefinition
    """
    if callable(job_or_factory) and not isinstance(job_or_factory, JobDefinition):
        definition = job_or_factory()
    else:
        definition = job_or_factory

    if not isinstance(definition, JobDefinition):
        raise TypeError(
            f"Expected JobDefinition, got {type(definition).__name__}. "
            "If using as decorator, the function must return a JobDefinition."
        )

    if definition.name in _registry and not replace:
        raise ValueError(f"Job '{definition.name}' is already registered")

    _registry[definition.name] = definition
    logger.debug("job_registered", name=definition.name, step_count=len(definition.steps))
    return definition


def get_job(name: str) -> JobDefinition:
    """Get a job definition by name; raises :class:`JobNotFoundError`."""
    if name not in _registry:
        raise JobNotFoundError(name, list(_registry))
    return _registry[name]


def list_jobs() -> list[str]:
    """Sorted names of all registered jobs."""
    return sorted(_registry)


def job_exists(name: str) -> bool:
    return name in _registry


def load_job(ref: str) -> JobDefinition:
    """Import a job definition from a ``'module:attr'`` reference.

    ``attr`` may be a JobDefinition or a zero-argument factory returning one.
    A plain name without ``':'`` is looked up in the registry instead.
    """
    if ":" not in ref:
        return get_job(ref)

    obj = resolve_callable_ref(ref)
    if callable(obj) and not isinstance(obj, JobDefinition):
        obj = obj()
    if not isinstance(obj, JobDefinition):
        raise TypeError(f"'{ref}' resolved to {type(obj).__name__}, expected JobDefinition")
    return obj


def clear_job_registry() -> None:
    """Clear the job registry (primarily for testing)."""
    _registry.clear()
    logger.debug("job_registry_cleared")
