"""
Tagged outcome of a pipeline step.

    Ok(value)                 -> use value
    Recoverable(reason, value) -> carry on with the (possibly empty) value
    Fatal(reason, metadata)   -> abort the whole batch

Callers pattern-match instead of inspecting exceptions, so "skip this
value" and "abort everything" cannot be confused.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Recoverable(Generic[T]):
    reason: str
    value: T | None = None


@dataclass(frozen=True, slots=True)
class Fatal:
    reason: str
    metadata: dict[str, Any] = field(default_factory=dict)


Outcome = Union[Ok[T], Recoverable[T], Fatal]
