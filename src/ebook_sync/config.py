"""Configuration constants and environment settings for ebook-sync."""

import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class Backend(StrEnum):
    """Which note-taking backend the library server mirrors into."""

    FLAT = "flat"
    NESTED = "nested"


# Job polling: one status check every POLL_INTERVAL seconds, at most
# POLL_MAX_ATTEMPTS checks (about five minutes).
POLL_INTERVAL: float = 2.0
POLL_MAX_ATTEMPTS: int = 150

# Pause between two drained search queue items.
QUEUE_DRAIN_DELAY: float = 0.1

# Durable-store key holding the serialized search queue.
QUEUE_STORE_KEY: str = "ebook_sync.search_queue"

DEFAULT_SEARCH_PAGES: int = 3
STRUCTURE_NOTE_LIMIT: int = 1000
REQUEST_TIMEOUT: float = 30.0

DEFAULT_SERVER_URL: str = "http://localhost:3000"
DEFAULT_NOTES_PORT: int = 41184

# Note-app API token location. First file found is used.
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/ebook-sync-token.txt").expanduser(),
    Path("~/.config/secret/ebook-sync-token.txt").expanduser(),
]

# Directory with local state. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/ebook-sync").expanduser(),
    Path("~/.ebook-sync").expanduser(),
]


def resolve_data_directory() -> Path:
    """Return the first existing data directory, or the first candidate."""
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]


def read_token_file() -> str | None:
    for token_path in API_TOKEN_FILES:
        try:
            return token_path.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            pass
    return None


@dataclass(frozen=True)
class Settings:
    """Runtime settings, usually loaded from EBOOK_SYNC_* environment variables."""

    server_url: str = DEFAULT_SERVER_URL
    backend: Backend = Backend.FLAT
    token: str | None = None
    port: int = DEFAULT_NOTES_PORT
    data_dir: Path | None = None
    poll_interval: float = POLL_INTERVAL

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the environment, falling back to the token files."""
        data_dir_env = os.environ.get("EBOOK_SYNC_DATA_DIR")
        return cls(
            server_url=os.environ.get("EBOOK_SYNC_SERVER_URL", DEFAULT_SERVER_URL).rstrip("/"),
            backend=Backend(os.environ.get("EBOOK_SYNC_BACKEND", Backend.FLAT).lower()),
            token=os.environ.get("EBOOK_SYNC_TOKEN") or read_token_file(),
            port=int(os.environ.get("EBOOK_SYNC_PORT", DEFAULT_NOTES_PORT)),
            data_dir=Path(data_dir_env).expanduser() if data_dir_env else None,
            poll_interval=float(os.environ.get("EBOOK_SYNC_POLL_INTERVAL", POLL_INTERVAL)),
        )

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or resolve_data_directory()
