"""Shared test fixtures."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from ebook_sync.config import Backend, Settings
from tests.unit.fakes import FakeLibraryApi, MemoryStore, RecordingSleep

FLAT_FOLDERS = [
    {"id": 1, "parent_id": None, "title": "Books"},
    {"id": 2, "parent_id": 1, "title": "Science Fiction"},
    {"id": 3, "parent_id": 1, "title": "History"},
    {"id": 4, "parent_id": "", "title": "Inbox"},
]

FLAT_NOTES = [
    {"id": 10, "parent_id": 2, "title": "Dune", "updated_time": 1700000000000},
    {"id": 11, "parent_id": 2, "title": "Hyperion", "updated_time": 1700000001000},
    {"id": 12, "parent_id": 3, "title": "SPQR", "updated_time": 1700000002000},
    {"id": 13, "parent_id": 1, "title": "", "updated_time": 1700000003000},
    {"id": 14, "parent_id": None, "title": "Reading list", "updated_time": 1700000004000},
]


@pytest.fixture
def fake_api() -> FakeLibraryApi:
    api = FakeLibraryApi()
    api.flat = {"folders": list(FLAT_FOLDERS), "notes": list(FLAT_NOTES)}
    return api


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        server_url="http://library.test",
        backend=Backend.FLAT,
        token="test-token",
        port=41184,
        data_dir=tmp_path / "data",
        poll_interval=0,
    )


@pytest.fixture
def cli_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_api: FakeLibraryApi
) -> Iterator[FakeLibraryApi]:
    """Point the CLI at a fake server and a temporary data directory."""
    monkeypatch.setattr("ebook_sync.config.API_TOKEN_FILES", [])
    monkeypatch.setattr("ebook_sync.cli.LibraryApi", lambda _url: fake_api)
    monkeypatch.setenv("EBOOK_SYNC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("EBOOK_SYNC_TOKEN", "test-token")
    monkeypatch.setenv("EBOOK_SYNC_BACKEND", "flat")
    monkeypatch.setenv("EBOOK_SYNC_POLL_INTERVAL", "0")
    yield fake_api
