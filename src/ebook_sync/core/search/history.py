"""Server-side search history: list and bulk delete."""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ebook_sync.exceptions import ApiError
from ebook_sync.protocols import HistoryApiProtocol


@dataclass(frozen=True)
class HistoryDeleteResult:
    """Outcome of a bulk delete."""

    deleted: tuple[int | str, ...]
    failed: tuple[int | str, ...]


def list_history(
    api: HistoryApiProtocol, *, keyword: str | None = None, limit: int = 50
) -> list[dict[str, Any]]:
    """Return past searches recorded by the server, newest first."""
    return api.get_search_history(keyword=keyword, limit=limit)


def delete_history(api: HistoryApiProtocol, ids: Iterable[int | str]) -> HistoryDeleteResult:
    """Delete history entries one by one; a failed entry does not stop the rest."""
    deleted: list[int | str] = []
    failed: list[int | str] = []
    for result_id in ids:
        try:
            api.delete_search_result(result_id)
        except ApiError as e:
            logger.warning("Could not delete search history {}: {}", result_id, e)
            failed.append(result_id)
        else:
            deleted.append(result_id)

    if failed:
        logger.info("Deleted {} search history entries, {} failed", len(deleted), len(failed))
    else:
        logger.info("Deleted {} search history entries", len(deleted))
    return HistoryDeleteResult(deleted=tuple(deleted), failed=tuple(failed))
