"""Protocols for dependency injection between the core and its collaborators."""

from typing import Any, Protocol, runtime_checkable

from ebook_sync.models.job import Credentials, Job, JobKind


@runtime_checkable
class SyncApiProtocol(Protocol):
    """Remote Sync API: issues jobs, reports job status, returns structures."""

    def issue_sync_job(
        self, kind: JobKind, credentials: Credentials | None, params: dict[str, Any]
    ) -> int:
        """Start a server-side job and return its id."""
        ...

    def get_job(self, job_id: int) -> Job:
        """Return the current state of a job."""
        ...

    def list_jobs(self, limit: int = 50) -> list[Job]:
        """Return the most recent jobs, newest first."""
        ...

    def get_flat_structure(self) -> dict[str, list[dict[str, Any]]]:
        """Return ``{"folders": [...], "notes": [...]}`` from the flat backend."""
        ...

    def get_nested_structure(self) -> list[dict[str, Any]]:
        """Return the notebook tree from the nested backend."""
        ...


@runtime_checkable
class SearchApiProtocol(Protocol):
    """Remote Search API: one synchronous search per call."""

    def execute_search(self, query: str, pages: int) -> Any:
        """Run a search and return its results."""
        ...


@runtime_checkable
class StoreProtocol(Protocol):
    """Durable key-value store that survives restarts."""

    def save(self, key: str, value: str) -> None:
        """Store a text blob under key."""
        ...

    def load(self, key: str) -> str | None:
        """Return the blob stored under key, or None."""
        ...


@runtime_checkable
class HistoryApiProtocol(Protocol):
    """Server-side record of past searches."""

    def get_search_history(
        self, keyword: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Return past searches, optionally filtered by keyword."""
        ...

    def delete_search_result(self, result_id: int | str) -> None:
        """Delete one history entry."""
        ...
