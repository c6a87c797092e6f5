"""Error taxonomy for ebook-sync."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ebook_sync.models.job import Job


class SyncError(Exception):
    """Base class for all ebook-sync errors."""


class ValidationError(SyncError):
    """A required parameter is missing; raised before any network attempt."""


class ApiError(SyncError):
    """The remote API rejected or failed a single call."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthError(ApiError):
    """The remote API rejected the credentials (HTTP 401/403)."""


class TransientNetworkError(ApiError):
    """A single call failed at the transport level or with a server error."""


class JobFailedError(SyncError):
    """The remote system reports that a job itself failed."""

    def __init__(self, job: Job) -> None:
        message = job.error_message or "unknown error"
        super().__init__(f"Job {job.id} ({job.type}) failed: {message}")
        self.job = job


class StructuralCycleError(SyncError):
    """A flat or nested hierarchy contains a parent/child cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__("Cycle in folder hierarchy: " + " -> ".join(cycle))
        self.cycle = cycle


class InvalidQueueOperation(SyncError):
    """A search queue operation is not allowed in the item's current state."""


class QueueItemBusyError(InvalidQueueOperation):
    """The item is being processed and cannot be removed."""


class QueueItemNotFoundError(InvalidQueueOperation):
    """No queue item with the given id."""
