"""Remote synchronization job model."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ebook_sync.exceptions import JobFailedError


class JobKind(StrEnum):
    SYNC_STRUCTURE = "sync_structure"
    SYNC_BOOKS = "sync_books"
    SYNC_TAGGED_BOOKS = "sync_tagged_books"
    FORCE_SYNC_BOOKS = "force_sync_books"
    RECREATE_BOOK_FOLDER = "recreate_book_folder"


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Kinds the nested backend does not support.
FLAT_ONLY_KINDS = frozenset(
    {JobKind.SYNC_STRUCTURE, JobKind.SYNC_TAGGED_BOOKS, JobKind.FORCE_SYNC_BOOKS}
)


@dataclass(frozen=True)
class Job:
    """A server-side job as reported by the sync API. Never written by the client."""

    id: int
    type: JobKind | str
    status: JobStatus
    total_items: int = 0
    completed_items: int = 0
    error_message: str | None = None
    created_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        raw_type = data.get("job_type", data.get("type", ""))
        try:
            job_type: JobKind | str = JobKind(raw_type)
        except ValueError:
            job_type = raw_type
        return cls(
            id=int(data["id"]),
            type=job_type,
            status=JobStatus(data["status"]),
            total_items=data.get("total_items") or 0,
            completed_items=data.get("completed_items") or 0,
            error_message=data.get("error_message") or None,
            created_at=data.get("created_at"),
            completed_at=data.get("completed_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> tuple[int, int]:
        return self.completed_items, self.total_items

    def raise_for_failure(self) -> None:
        """Raise JobFailedError if the remote system reports this job failed."""
        if self.status is JobStatus.FAILED:
            raise JobFailedError(self)


@dataclass(frozen=True)
class Credentials:
    """Connection settings the server forwards to the flat backend's local API."""

    token: str | None
    port: int
