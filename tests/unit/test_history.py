"""Tests for server-side search history helpers."""

from ebook_sync.core.search.history import delete_history, list_history
from tests.unit.fakes import FakeLibraryApi

HISTORY = [
    {"id": 1, "keyword": "dune", "created_at": "2024-05-01"},
    {"id": 2, "keyword": "hyperion", "created_at": "2024-05-02"},
    {"id": 3, "keyword": "dune messiah", "created_at": "2024-05-03"},
]


def test_list_history_filters_by_keyword() -> None:
    api = FakeLibraryApi()
    api.history = list(HISTORY)

    rows = list_history(api, keyword="dune", limit=10)

    assert [r["id"] for r in rows] == [1, 3]
    assert api.calls == [("get_search_history", ("dune", 10))]


def test_delete_history_counts_failures_and_continues() -> None:
    api = FakeLibraryApi()
    api.history = list(HISTORY)
    api.undeletable = {"2"}

    result = delete_history(api, ["1", "2", "3"])

    assert result.deleted == ("1", "3")
    assert result.failed == ("2",)
    assert [h["id"] for h in api.history] == [2]
    assert api.count("delete_search_result") == 3


def test_delete_history_with_no_ids() -> None:
    result = delete_history(FakeLibraryApi(), [])
    assert result.deleted == ()
    assert result.failed == ()
