"""Search queue item model."""

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


class QueueItemKind(StrEnum):
    SEARCH = "search"
    MISSING_CHAPTERS = "missing-chapters"


class QueueItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    ERROR = "error"
    COMPLETED = "completed"


@dataclass(frozen=True)
class QueueItem:
    """A single search request owned by the search queue."""

    id: int
    kind: QueueItemKind
    payload: dict[str, Any] = field(default_factory=dict)
    status: QueueItemStatus = QueueItemStatus.PENDING
    results: Any = None
    error_message: str | None = None

    def with_status(self, status: QueueItemStatus, **changes: Any) -> "QueueItem":
        return replace(self, status=status, **changes)

    @property
    def query(self) -> str:
        """Text sent to the search API."""
        if self.kind is QueueItemKind.MISSING_CHAPTERS:
            return str(self.payload.get("book_name") or "")
        return str(self.payload.get("keyword") or "")

    @property
    def result_count(self) -> int:
        """Number of hits in the stored results, whatever their shape."""
        results = self.results
        if isinstance(results, dict):
            if isinstance(results.get("threads"), list):
                return len(results["threads"])
            return int(results.get("totalResults") or 0)
        if isinstance(results, list):
            return len(results)
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": str(self.kind),
            "payload": dict(self.payload),
            "status": str(self.status),
            "results": self.results,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        return cls(
            id=int(data["id"]),
            kind=QueueItemKind(data["kind"]),
            payload=dict(data.get("payload") or {}),
            status=QueueItemStatus(data["status"]),
            results=data.get("results"),
            error_message=data.get("error_message"),
        )
