"""
Error taxonomy for the assignment and synchronization engine.

Validation and capacity errors block the triggering operation before any
state is mutated. Remote errors are raised by the Remote Sync Client and
turned into sync-status changes by the Assignment Controller.
"""

from typing import Optional


class SpaceSyncError(Exception):
    """Base class for all engine errors."""
    pass


class CapacityExceeded(SpaceSyncError):
    """Raised when an allocation needs more free spaces than exist."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} space(s) but only {available} available"
        )


class ValidationError(SpaceSyncError):
    """Raised when a list name or entity shape violates the data model."""
    pass


class NotFoundError(SpaceSyncError):
    """Raised when an entity or list id is unknown to the store."""
    pass


class RemoteError(SpaceSyncError):
    """Base class for failures talking to the remote label service."""
    pass


class RemoteUnavailable(RemoteError):
    """Network or HTTP failure. Local state is preserved."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthExpired(RemoteError):
    """No usable bearer token. Dependent calls short-circuit."""
    pass
