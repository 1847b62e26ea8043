"""Explicit results for job store operations.

Manager and monitor calls never raise store errors across their boundary. They
return an ``Outcome`` instead, so callers can tell "no such job" apart from
"database unreachable".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class StoreError(str, Enum):
    UNAVAILABLE = "unavailable"  # store was never reachable (not initialized)
    QUERY_FAILED = "query_failed"
    NOT_FOUND = "not_found"
    TERMINAL_STATE = "terminal_state"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: StoreError | None = None
    detail: str | None = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: StoreError, detail: str | None = None) -> "Outcome[T]":
        return cls(error=error, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap_or(self, default: T) -> T:
        if self.error is None and self.value is not None:
            return self.value
        return default
