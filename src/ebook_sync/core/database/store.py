"""Durable key-value store backed by SQLite."""

import sqlite3
import time
from pathlib import Path

from loguru import logger

from ebook_sync.core.database.schema import migrate_schema

DB_FILENAME = "ebook-sync.db"


class SqliteStore:
    """Text values by key, written through on every ``save``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def save(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, int(time.time())),
        )
        self.conn.commit()

    def load(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open (creating if needed) the state database and bring its schema up to date."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    migrate_schema(conn)
    return conn


def open_store(data_dir: Path) -> SqliteStore:
    db_path = data_dir / DB_FILENAME
    logger.debug("Opening state database {}", db_path)
    return SqliteStore(connect(db_path))
