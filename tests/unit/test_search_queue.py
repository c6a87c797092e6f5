"""Tests for the persistent search queue."""

import asyncio
import json

import pytest

from ebook_sync.config import QUEUE_STORE_KEY
from ebook_sync.core.events import EventBus, MissingChaptersCompleted, SearchCompleted
from ebook_sync.core.search.queue import SearchQueueProcessor, decode_snapshot
from ebook_sync.exceptions import (
    ApiError,
    InvalidQueueOperation,
    QueueItemBusyError,
    QueueItemNotFoundError,
    ValidationError,
)
from ebook_sync.models.queue import QueueItemKind, QueueItemStatus
from tests.unit.fakes import FakeLibraryApi, MemoryStore, RecordingSleep


def _processor(
    api: FakeLibraryApi,
    store: MemoryStore,
    sleep: RecordingSleep,
    events: EventBus | None = None,
) -> SearchQueueProcessor:
    return SearchQueueProcessor(api, store, events=events, sleep=sleep)


def _snapshot(store: MemoryStore) -> list[dict]:
    return json.loads(store.data[QUEUE_STORE_KEY])


def test_items_run_in_order_one_at_a_time(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    store = MemoryStore()
    queue = _processor(api, store, sleep)
    processing_counts: list[int] = []
    api.on_search = lambda _q: processing_counts.append(
        sum(1 for i in queue.items if i.status is QueueItemStatus.PROCESSING)
    )

    async def scenario() -> None:
        queue.enqueue_search("dune")
        queue.enqueue_search("hyperion")
        queue.enqueue_search("spqr")
        await queue.join()

    asyncio.run(scenario())

    assert [args[0] for name, args in api.calls if name == "execute_search"] == [
        "dune",
        "hyperion",
        "spqr",
    ]
    assert processing_counts == [1, 1, 1]
    assert [i.status for i in queue.items] == [QueueItemStatus.COMPLETED] * 3
    assert not queue.busy


def test_drain_waits_between_items(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    queue = _processor(api, MemoryStore(), sleep)

    async def scenario() -> None:
        queue.enqueue_search("dune")
        queue.enqueue_search("hyperion")
        await queue.join()

    asyncio.run(scenario())

    assert sleep.delays
    assert set(sleep.delays) == {0.1}


def test_failed_item_does_not_block_the_next_one(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    api.search_results = {"broken": ApiError("search backend down", status=502)}
    api.search_results["dune"] = {"threads": [{"title": "Dune"}]}
    store = MemoryStore()
    queue = _processor(api, store, sleep)

    async def scenario() -> None:
        queue.enqueue_search("broken")
        queue.enqueue_search("dune")
        await queue.join()

    asyncio.run(scenario())

    first, second = queue.items
    assert first.status is QueueItemStatus.ERROR
    assert first.error_message == "search backend down"
    assert second.status is QueueItemStatus.COMPLETED
    assert second.results == {"threads": [{"title": "Dune"}]}
    assert [e["status"] for e in _snapshot(store)] == ["error", "completed"]


def test_unexpected_exception_marks_item_as_error(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    api.search_results = {"dune": KeyError("threads")}
    queue = _processor(api, MemoryStore(), sleep)

    async def scenario() -> None:
        queue.enqueue_search("dune")
        await queue.join()

    asyncio.run(scenario())
    assert queue.items[0].status is QueueItemStatus.ERROR


def test_error_without_message_records_exception_type(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    api.search_results = {"dune": KeyError()}
    store = MemoryStore()
    queue = _processor(api, store, sleep)

    async def scenario() -> None:
        queue.enqueue_search("dune")
        await queue.join()

    asyncio.run(scenario())

    assert queue.items[0].error_message == "KeyError"
    assert _snapshot(store)[0]["error_message"] == "KeyError"


def test_completion_events_by_kind(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    events = EventBus()
    searches: list[SearchCompleted] = []
    missing: list[MissingChaptersCompleted] = []
    events.subscribe(SearchCompleted, searches.append)
    events.subscribe(MissingChaptersCompleted, missing.append)
    queue = _processor(api, MemoryStore(), sleep, events)

    async def scenario() -> None:
        queue.enqueue_search("dune")
        queue.enqueue_missing_chapters(7, "Hyperion")
        await queue.join()

    asyncio.run(scenario())

    assert [e.item.query for e in searches] == ["dune"]
    assert [e.item.query for e in missing] == ["Hyperion"]
    assert ("execute_search", ("Hyperion", 3)) in api.calls


def test_enqueue_outside_event_loop_only_persists(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    store = MemoryStore()
    queue = _processor(api, store, sleep)

    item = queue.enqueue_search("dune", pages=5)

    assert item.status is QueueItemStatus.PENDING
    assert item.payload == {"keyword": "dune", "pages": 5}
    assert api.calls == []
    assert _snapshot(store)[0]["payload"]["keyword"] == "dune"


def test_keyword_is_trimmed_and_normalized_to_half_width(sleep: RecordingSleep) -> None:
    queue = _processor(FakeLibraryApi(), MemoryStore(), sleep)

    item = queue.enqueue_search("  Ｄｕｎｅ　１９６５ ")

    assert item.query == "Dune 1965"


@pytest.mark.parametrize("keyword", ["", "   ", "　　"])
def test_empty_keyword_is_rejected(sleep: RecordingSleep, keyword: str) -> None:
    store = MemoryStore()
    queue = _processor(FakeLibraryApi(), store, sleep)

    with pytest.raises(ValidationError):
        queue.enqueue_search(keyword)
    assert queue.items == ()
    assert store.saves == 0


def test_ids_are_unique_and_increasing(sleep: RecordingSleep) -> None:
    queue = _processor(FakeLibraryApi(), MemoryStore(), sleep)
    ids = [queue.enqueue_search(f"book {n}").id for n in range(20)]
    assert ids == sorted(set(ids))


def test_remove_pending_item(sleep: RecordingSleep) -> None:
    store = MemoryStore()
    queue = _processor(FakeLibraryApi(), store, sleep)
    keep = queue.enqueue_search("dune")
    drop = queue.enqueue_search("hyperion")

    removed = queue.remove(drop.id)

    assert removed.id == drop.id
    assert [i.id for i in queue.items] == [keep.id]
    assert [e["id"] for e in _snapshot(store)] == [keep.id]


def test_remove_unknown_item_raises(sleep: RecordingSleep) -> None:
    queue = _processor(FakeLibraryApi(), MemoryStore(), sleep)
    with pytest.raises(QueueItemNotFoundError):
        queue.remove(12345)


def test_remove_processing_item_is_refused(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    queue = _processor(api, MemoryStore(), sleep)
    refused: list[Exception] = []

    def try_remove(_query: str) -> None:
        try:
            queue.remove(queue.items[0].id)
        except QueueItemBusyError as e:
            refused.append(e)

    api.on_search = try_remove

    async def scenario() -> None:
        queue.enqueue_search("dune")
        await queue.join()

    asyncio.run(scenario())

    assert len(refused) == 1
    assert queue.items[0].status is QueueItemStatus.COMPLETED


def test_retry_moves_failed_item_back_to_pending_and_runs_it(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    api.search_results = {"dune": ApiError("timeout")}
    queue = _processor(api, MemoryStore(), sleep)

    async def scenario() -> None:
        item = queue.enqueue_search("dune")
        await queue.join()
        assert queue.get(item.id).status is QueueItemStatus.ERROR

        api.search_results = {"dune": {"threads": [{"title": "Dune"}]}}
        retried = queue.retry(item.id)
        assert retried.status is QueueItemStatus.PENDING
        assert retried.error_message is None
        await queue.join()

    asyncio.run(scenario())

    item = queue.items[0]
    assert item.status is QueueItemStatus.COMPLETED
    assert item.result_count == 1
    assert api.count("execute_search") == 2


def test_retry_of_non_failed_item_is_refused(sleep: RecordingSleep) -> None:
    queue = _processor(FakeLibraryApi(), MemoryStore(), sleep)
    item = queue.enqueue_search("dune")

    with pytest.raises(InvalidQueueOperation):
        queue.retry(item.id)


def test_drain_is_noop_without_pending_items(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    queue = _processor(api, MemoryStore(), sleep)
    asyncio.run(queue.drain())
    assert api.calls == []


def test_restore_drops_items_that_were_processing(sleep: RecordingSleep) -> None:
    saved = [
        {"id": 100, "kind": "search", "payload": {"keyword": "a"}, "status": "completed"},
        {"id": 101, "kind": "search", "payload": {"keyword": "b"}, "status": "processing"},
        {"id": 102, "kind": "search", "payload": {"keyword": "c"}, "status": "error",
         "error_message": "boom"},
        {"id": 103, "kind": "missing-chapters", "payload": {"book_id": 1, "book_name": "d"},
         "status": "pending"},
    ]
    store = MemoryStore({QUEUE_STORE_KEY: json.dumps(saved)})
    queue = _processor(FakeLibraryApi(), store, sleep)

    queue.restore()

    assert [i.id for i in queue.items] == [100, 102, 103]
    assert queue.get(102).error_message == "boom"
    assert queue.get(103).kind is QueueItemKind.MISSING_CHAPTERS
    assert all(i.status is not QueueItemStatus.PROCESSING for i in queue.items)


def test_restored_queue_continues_ids_and_runs_pending(sleep: RecordingSleep) -> None:
    far_future_id = 10**15
    saved = [{"id": far_future_id, "kind": "search", "payload": {"keyword": "dune"},
              "status": "pending"}]
    api = FakeLibraryApi()
    queue = _processor(api, MemoryStore({QUEUE_STORE_KEY: json.dumps(saved)}), sleep)
    queue.restore()

    new = queue.enqueue_search("hyperion")
    assert new.id > far_future_id

    asyncio.run(queue.join())
    assert [args[0] for name, args in api.calls if name == "execute_search"] == [
        "dune",
        "hyperion",
    ]


@pytest.mark.parametrize(
    "raw",
    [None, "", "{not json", '{"id": 1}', '[{"id": 1, "kind": "teleport", "status": "pending"}]',
     "[1, 2, 3]"],
)
def test_restore_tolerates_missing_or_malformed_snapshot(
    sleep: RecordingSleep, raw: str | None
) -> None:
    data = {} if raw is None else {QUEUE_STORE_KEY: raw}
    queue = _processor(FakeLibraryApi(), MemoryStore(data), sleep)

    queue.restore()

    assert queue.items == ()


def test_decode_snapshot_keeps_results() -> None:
    raw = json.dumps(
        [{"id": 1, "kind": "search", "payload": {"keyword": "x"}, "status": "completed",
          "results": {"threads": [1, 2, 3]}}]
    )
    (item,) = decode_snapshot(raw)
    assert item.result_count == 3


def test_close_stops_continuation(sleep: RecordingSleep) -> None:
    api = FakeLibraryApi()
    queue = _processor(api, MemoryStore(), sleep)

    async def scenario() -> None:
        queue.enqueue_search("dune")
        queue.close()
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert api.calls == []
    assert queue.items[0].status is QueueItemStatus.PENDING
