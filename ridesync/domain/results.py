"""Result envelope returned by every engine mutation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .errors import RideSyncError

T = TypeVar("T")


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """
    ``error`` is set for failures, ``applied`` is False when the store
    accepted the call but its guard matched no row (e.g. a lost accept
    race).  Callers re-derive truth from the next reconciled row.
    """

    data: Optional[T] = None
    error: Optional[RideSyncError] = None
    applied: bool = True

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_no_op(self) -> bool:
        return self.error is None and not self.applied

    @classmethod
    def success(cls, data: Optional[T] = None) -> "MutationResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: RideSyncError) -> "MutationResult[T]":
        return cls(error=error, applied=False)

    @classmethod
    def no_op(cls) -> "MutationResult[T]":
        return cls(applied=False)
