"""
Error taxonomy shared by the synchronization engines and the API.

Expected failures are *returned* inside a ``MutationResult`` by the
engines; the API layer turns them into HTTP responses.
"""

from __future__ import annotations

from typing import Optional


class RideSyncError(Exception):
    """Base class for every expected failure in the ride core."""


class AuthenticationError(RideSyncError):
    """No principal is bound to the current context."""

    def __init__(self, message: str = "Please sign in to continue"):
        super().__init__(message)


class ValidationError(RideSyncError):
    """Input rejected client-side, before any network round-trip."""


class PermissionDeniedError(RideSyncError):
    """The principal's roles or ownership do not allow the operation."""


class StoreError(RideSyncError):
    """The backing record store failed (network, permission, conflict, timeout)."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.store_message = message
        text = f"Failed to {operation}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
