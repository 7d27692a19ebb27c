"""Translate engine errors into HTTP responses."""

from typing import NoReturn

from fastapi import HTTPException

from ridesync.domain.entities import InvalidStateTransition
from ridesync.domain.errors import (
    AuthenticationError,
    PermissionDeniedError,
    RideSyncError,
    StoreError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[RideSyncError], int]] = [
    (AuthenticationError, 401),
    (PermissionDeniedError, 403),
    (InvalidStateTransition, 409),
    (ValidationError, 422),
    (StoreError, 503),
]


def status_code_for(error: RideSyncError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 500


def raise_for(error: RideSyncError) -> NoReturn:
    raise HTTPException(status_code=status_code_for(error), detail=str(error))
