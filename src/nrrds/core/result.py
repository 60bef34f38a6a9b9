"""
Result values for lookups that recover with a safe default.

Guidance lookups, theme scans and stats reads never abort the caller. They
return a Result whose value is always usable and whose ``error`` records the
storage failure (if any) that forced the default.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .exceptions import StorageDegradedError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    A value plus the degradation that produced it.

    Attributes:
        value: The computed value, or the safe default when degraded
        error: Storage failure that forced the default, None on success
    """
    value: T
    error: StorageDegradedError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def degraded(cls, default: T, error: StorageDegradedError) -> "Result[T]":
        return cls(value=default, error=error)
