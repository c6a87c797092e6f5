"""Persistent single-worker queue of search requests."""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from ebook_sync.config import DEFAULT_SEARCH_PAGES, QUEUE_DRAIN_DELAY, QUEUE_STORE_KEY
from ebook_sync.core.events import EventBus, MissingChaptersCompleted, SearchCompleted
from ebook_sync.core.search.text import normalize_keyword
from ebook_sync.exceptions import (
    InvalidQueueOperation,
    QueueItemBusyError,
    QueueItemNotFoundError,
    SyncError,
    ValidationError,
)
from ebook_sync.models.queue import QueueItem, QueueItemKind, QueueItemStatus
from ebook_sync.protocols import SearchApiProtocol, StoreProtocol


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


def decode_snapshot(raw: str | None) -> list[QueueItem]:
    """Parse a stored queue snapshot.

    Absent or unreadable data yields an empty queue. Items that were
    ``processing`` when the snapshot was taken are dropped: there is no way
    to know whether their search went through.
    """
    if not raw:
        return []
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            msg = f"expected a list, got {type(data).__name__}"
            raise TypeError(msg)
        items = [QueueItem.from_dict(entry) for entry in data]
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning("Discarding unreadable search queue snapshot: {}", e)
        return []

    kept = [i for i in items if i.status is not QueueItemStatus.PROCESSING]
    if len(kept) != len(items):
        logger.info("Dropped {} interrupted search(es) from the queue", len(items) - len(kept))
    return kept


class SearchQueueProcessor:
    """Run queued searches one at a time, in insertion order.

    The ``_busy`` flag guarantees at most one item is ``processing``. After
    each item the full queue is persisted, and the next pending item is
    picked up after ``drain_delay`` seconds. A failed item does not block
    the ones behind it; it waits in ``error`` until retried.
    """

    def __init__(
        self,
        api: SearchApiProtocol,
        store: StoreProtocol,
        *,
        events: EventBus | None = None,
        drain_delay: float = QUEUE_DRAIN_DELAY,
        store_key: str = QUEUE_STORE_KEY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._store = store
        self._events = events
        self.drain_delay = drain_delay
        self.store_key = store_key
        self._sleep = sleep

        self._items: list[QueueItem] = []
        self._busy = False
        self._closed = False
        self._last_id = 0
        self._continuation: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[Any] | None = None

    # --- state ---

    @property
    def items(self) -> tuple[QueueItem, ...]:
        return tuple(self._items)

    @property
    def busy(self) -> bool:
        return self._busy

    def get(self, item_id: int) -> QueueItem:
        for item in self._items:
            if item.id == item_id:
                return item
        msg = f"No queued search with id {item_id}"
        raise QueueItemNotFoundError(msg)

    def pending(self) -> list[QueueItem]:
        return [i for i in self._items if i.status is QueueItemStatus.PENDING]

    def _replace(self, new: QueueItem) -> QueueItem:
        for idx, item in enumerate(self._items):
            if item.id == new.id:
                self._items[idx] = new
                break
        return new

    def _next_id(self) -> int:
        # Millisecond timestamps, bumped when two items land in the same millisecond.
        self._last_id = max(int(time.time() * 1000), self._last_id + 1)
        return self._last_id

    # --- persistence ---

    def restore(self) -> None:
        """Load the queue saved by a previous run."""
        self._items = decode_snapshot(self._store.load(self.store_key))
        self._last_id = max((i.id for i in self._items), default=0)
        logger.debug("Restored {} queued search(es)", len(self._items))

    def _persist(self) -> None:
        snapshot = json.dumps([i.to_dict() for i in self._items], ensure_ascii=False)
        self._store.save(self.store_key, snapshot)

    # --- operations ---

    def enqueue(self, kind: QueueItemKind, payload: dict[str, Any]) -> QueueItem:
        item = QueueItem(id=self._next_id(), kind=QueueItemKind(kind), payload=dict(payload))
        self._items.append(item)
        self._persist()
        logger.info("Queued {} {!r} (id {})", item.kind, item.query, item.id)
        self._schedule_drain(0)
        return item

    def enqueue_search(self, keyword: str, pages: int = DEFAULT_SEARCH_PAGES) -> QueueItem:
        normalized = normalize_keyword(keyword)
        if not normalized:
            msg = "A search keyword is required"
            raise ValidationError(msg)
        return self.enqueue(QueueItemKind.SEARCH, {"keyword": normalized, "pages": pages})

    def enqueue_missing_chapters(
        self, book_id: int | str, book_name: str, pages: int = DEFAULT_SEARCH_PAGES
    ) -> QueueItem:
        if not str(book_name).strip():
            msg = "A book name is required to search for missing chapters"
            raise ValidationError(msg)
        return self.enqueue(
            QueueItemKind.MISSING_CHAPTERS,
            {"book_id": book_id, "book_name": book_name.strip(), "pages": pages},
        )

    def remove(self, item_id: int) -> QueueItem:
        item = self.get(item_id)
        if item.status is QueueItemStatus.PROCESSING:
            msg = f"Search {item_id} is running and cannot be removed"
            raise QueueItemBusyError(msg)
        self._items.remove(item)
        self._persist()
        return item

    def retry(self, item_id: int) -> QueueItem:
        item = self.get(item_id)
        if item.status is not QueueItemStatus.ERROR:
            msg = f"Only failed searches can be retried; {item_id} is {item.status}"
            raise InvalidQueueOperation(msg)
        item = self._replace(
            item.with_status(QueueItemStatus.PENDING, results=None, error_message=None)
        )
        self._persist()
        self._schedule_drain(0)
        return item

    async def drain(self) -> None:
        """Process the first pending item, then schedule the next drain.

        Calling this while another item is being processed does nothing.
        """
        if self._busy:
            return
        item = next(iter(self.pending()), None)
        if item is None:
            return

        self._busy = True
        self._inflight = asyncio.current_task()
        item = self._replace(item.with_status(QueueItemStatus.PROCESSING))
        self._persist()
        try:
            pages = int(item.payload.get("pages") or DEFAULT_SEARCH_PAGES)
            results = await asyncio.to_thread(self._api.execute_search, item.query, pages)
        except SyncError as e:
            logger.warning("Search {!r} failed: {}", item.query, e)
            self._replace(item.with_status(QueueItemStatus.ERROR, error_message=_describe(e)))
        except Exception as e:
            logger.exception("Search {!r} failed", item.query)
            self._replace(item.with_status(QueueItemStatus.ERROR, error_message=_describe(e)))
        else:
            done = self._replace(item.with_status(QueueItemStatus.COMPLETED, results=results))
            logger.info("Search {!r} done ({} results)", done.query, done.result_count)
            self._publish_completed(done)
        finally:
            self._busy = False
            self._inflight = None
            self._persist()
            self._schedule_drain(self.drain_delay)

    async def join(self) -> None:
        """Wait until no search is pending or running."""
        while True:
            waiting_on: asyncio.Task[Any] | None = None
            if self._continuation is not None and not self._continuation.done():
                waiting_on = self._continuation
            elif self._busy and self._inflight not in (None, asyncio.current_task()):
                waiting_on = self._inflight
            if waiting_on is not None:
                await asyncio.wait({waiting_on})
                continue
            if not self.pending():
                return
            await self.drain()

    def close(self) -> None:
        """Stop self-continuation. A search already in flight still finishes."""
        self._closed = True
        if self._continuation is not None and not self._continuation.done():
            self._continuation.cancel()
        self._continuation = None

    # --- internals ---

    def _schedule_drain(self, delay: float) -> None:
        if self._closed or self._busy:
            return
        if self._continuation is not None and not self._continuation.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No scheduler yet; the queue is persisted and drained on the next run.
            return
        self._continuation = loop.create_task(self._continue(delay), name="search-queue-drain")

    async def _continue(self, delay: float) -> None:
        if delay:
            await self._sleep(delay)
        self._continuation = None
        await self.drain()

    def _publish_completed(self, item: QueueItem) -> None:
        if self._events is None:
            return
        if item.kind is QueueItemKind.MISSING_CHAPTERS:
            self._events.publish(MissingChaptersCompleted(item))
        else:
            self._events.publish(SearchCompleted(item))
