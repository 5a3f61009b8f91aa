"""Job parameters — immutable, typed launch parameters.

A ``ParameterSet`` identifies a job run: the JobInstance of a launch is
(job name, identifying parameters). Non-identifying parameters travel with
the execution but do not change its identity.

ARCHITECTURE
────────────
::

    JobParameter(value, type, identifying)
        type ∈ STRING | LONG | DOUBLE | DATE

    ParameterSet                    ── Mapping[name, value]
      ├── .from_mapping({...})      ── infer types from python values
      ├── .from_strings([...])      ── "name(type)=value", "-name=value"
      ├── .parameter(name)          → JobParameter | None
      ├── .get_string/long/double/date(name)
      ├── .merge(other)             → new ParameterSet (other wins)
      ├── .identifying()            → ParameterSet of identifying params
      └── .fingerprint()            → stable hash of identifying params

    RunIdIncrementer               ── adds "run.id" = previous + 1

Example::

    params = ParameterSet.from_strings(["requestDate(date)=2024-01-01", "-chunk(long)=5"])
    params["requestDate"]       # datetime.date(2024, 1, 1)
    params.get("missing")      # None
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from batchcore.core.errors import ParameterError
from batchcore.core.hashing import compute_hash


class ParameterType(str, Enum):
    """Supported parameter value types."""

    STRING = "STRING"
    LONG = "LONG"
    DOUBLE = "DOUBLE"
    DATE = "DATE"


def _parse_date(raw: str) -> date | datetime:
    if len(raw) == 10:
        return date.fromisoformat(raw)
    return datetime.fromisoformat(raw)


def _coerce(value: Any, ptype: ParameterType) -> Any:
    """Convert *value* to the python type backing *ptype*."""
    try:
        if ptype == ParameterType.STRING:
            return str(value)
        if ptype == ParameterType.LONG:
            if isinstance(value, bool):
                raise ValueError("booleans are not LONG values")
            return int(value)
        if ptype == ParameterType.DOUBLE:
            return float(value)
        if isinstance(value, (date, datetime)):
            return value
        return _parse_date(str(value))
    except (TypeError, ValueError) as exc:
        raise ParameterError(f"Cannot convert {value!r} to {ptype.value}", cause=exc) from exc


def _infer_type(value: Any) -> ParameterType:
    if isinstance(value, bool):
        return ParameterType.STRING
    if isinstance(value, int):
        return ParameterType.LONG
    if isinstance(value, float):
        return ParameterType.DOUBLE
    if isinstance(value, (date, datetime)):
        return ParameterType.DATE
    return ParameterType.STRING


@dataclass(frozen=True)
class JobParameter:
    """A single typed launch parameter."""

    value: Any
    type: ParameterType = ParameterType.STRING
    identifying: bool = True

    @classmethod
    def of(cls, value: Any, ptype: ParameterType | str | None = None, identifying: bool = True) -> JobParameter:
        if isinstance(value, JobParameter):
            return value
        resolved = ParameterType(ptype.upper()) if isinstance(ptype, str) else ptype
        resolved = resolved or _infer_type(value)
        return cls(value=_coerce(value, resolved), type=resolved, identifying=identifying)

    def serialized_value(self) -> str:
        if self.type == ParameterType.DATE:
            return self.value.isoformat()
        return str(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.serialized_value(),
            "type": self.type.value,
            "identifying": self.identifying,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobParameter:
        return cls.of(data["value"], data.get("type", "STRING"), bool(data.get("identifying", True)))


# name(type)=value, optionally prefixed with "-" for non-identifying
_NOTATION = re.compile(r"^(?P<neg>-)?(?P<name>[^(=]+)(\((?P<type>[A-Za-z]+)\))?=(?P<value>.*)$")


class ParameterSet(Mapping[str, Any]):
    """Immutable mapping of parameter name to typed value."""

    __slots__ = ("_params",)

    def __init__(self, parameters: Mapping[str, JobParameter] | None = None):
        self._params: dict[str, JobParameter] = dict(parameters or {})

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls) -> ParameterSet:
        return cls()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> ParameterSet:
        """Build from plain values (types inferred) or ``JobParameter`` objects."""
        if isinstance(values, ParameterSet):
            return values
        return cls({name: JobParameter.of(value) for name, value in (values or {}).items()})

    @classmethod
    def from_strings(cls, items: Iterable[str]) -> ParameterSet:
        """Parse ``name(type)=value`` notation.

        Raises:
            ParameterError: If an item does not match the notation or the
                value cannot be converted.
        """
        params: dict[str, JobParameter] = {}
        for item in items:
            match = _NOTATION.match(item.strip())
            if match is None:
                raise ParameterError(f"Invalid parameter notation: {item!r}")
            raw_type = (match.group("type") or "STRING").upper()
            try:
                ptype = ParameterType(raw_type)
            except ValueError as exc:
                raise ParameterError(f"Unknown parameter type: {raw_type}", cause=exc) from exc
            name = match.group("name").strip()
            params[name] = JobParameter(
                value=_coerce(match.group("value"), ptype),
                type=ptype,
                identifying=match.group("neg") is None,
            )
        return cls(params)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> ParameterSet:
        """Deserialize the output of :meth:`to_dict`."""
        return cls({name: JobParameter.from_dict(raw) for name, raw in data.items()})

    # ------------------------------------------------------------------
    # Mapping protocol (values, not JobParameter wrappers)
    # ------------------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        return self._params[name].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParameterSet):
            return self._params == other._params
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted((k, v.type, v.serialized_value(), v.identifying) for k, v in self._params.items())))

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v.serialized_value()}" for k, v in self._params.items())
        return f"ParameterSet({inner})"

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def parameter(self, name: str) -> JobParameter | None:
        return self._params.get(name)

    def get_string(self, name: str, default: str | None = None) -> str | None:
        param = self._params.get(name)
        return default if param is None else str(param.value)

    def get_long(self, name: str, default: int | None = None) -> int | None:
        param = self._params.get(name)
        return default if param is None else int(param.value)

    def get_double(self, name: str, default: float | None = None) -> float | None:
        param = self._params.get(name)
        return default if param is None else float(param.value)

    def get_date(self, name: str, default: date | None = None) -> date | datetime | None:
        param = self._params.get(name)
        if param is None:
            return default
        return _coerce(param.value, ParameterType.DATE)

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def merge(self, other: Mapping[str, Any] | ParameterSet) -> ParameterSet:
        """Return a new set with *other* layered on top of this one."""
        extra = other if isinstance(other, ParameterSet) else ParameterSet.from_mapping(other)
        return ParameterSet({**self._params, **extra._params})

    def identifying(self) -> ParameterSet:
        return ParameterSet({k: v for k, v in self._params.items() if v.identifying})

    def fingerprint(self) -> str:
        """Stable hash of the identifying parameters (order independent)."""
        parts = [
            f"{name}={param.type.value}:{param.serialized_value()}"
            for name, param in sorted(self._params.items())
            if param.identifying
        ]
        return compute_hash(*parts)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: param.to_dict() for name, param in self._params.items()}

    def to_display(self) -> dict[str, str]:
        """Plain ``name -> value`` strings for logs and events."""
        return {name: param.serialized_value() for name, param in self._params.items()}


class RunIdIncrementer:
    """Adds a ``run.id`` parameter one greater than the previous launch's.

    Jobs that must always start a fresh instance carry this incrementer, so
    launching twice with the same user parameters never collides.
    """

    key = "run.id"

    def __init__(self, key: str | None = None):
        if key:
            self.key = key

    def next(self, parameters: ParameterSet, previous: ParameterSet | None) -> ParameterSet:
        last = previous.get_long(self.key, 0) if previous is not None else 0
        return parameters.merge(ParameterSet({self.key: JobParameter(last + 1, ParameterType.LONG)}))
