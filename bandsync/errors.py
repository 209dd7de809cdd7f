"""
Error taxonomy shared by every service.

Each error carries an HTTP status and a ``retryable`` flag so callers (and
the API layer) can tell terminal failures from transient ones.
"""

from __future__ import annotations

from typing import Optional


class BandSyncError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(BandSyncError):
    status_code = 400


class NotFound(BandSyncError):
    status_code = 404


class Conflict(BandSyncError):
    status_code = 409


class InvariantViolation(BandSyncError):
    status_code = 409


class LastAdminViolation(InvariantViolation):
    """The change would leave a group with members but no admin."""


class SelfDemotion(InvariantViolation):
    """An admin tried to drop their own admin role."""


class Unauthorized(BandSyncError):
    status_code = 403


class TransportError(BandSyncError):
    """Remote service failure. Safe to retry the same operation."""

    status_code = 503
    retryable = True


class PartialFailureError(BandSyncError):
    """
    A write spanning two systems completed only its first half.

    ``completed`` names the step that went through, ``pending`` the step that
    must be retried, and ``resource_id`` identifies what the retry needs.
    """

    status_code = 502
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        completed: str,
        pending: str,
        resource_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.completed = completed
        self.pending = pending
        self.resource_id = resource_id


class SchemaError(BandSyncError):
    """A stored document could not be migrated to the current schema."""
