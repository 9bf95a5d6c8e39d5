"""
core/result.py
--------------

Success/failure variant returned by every mutating operation of the
session manager. Callers decide whether to surface a failure (``unwrap``
raises the carried error) or to inspect ``ok`` and move on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> Optional[T]:
        """Return the value, or raise the carried error on failure."""
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value
