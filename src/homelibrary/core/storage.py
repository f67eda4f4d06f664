"""SQLite-backed key-value storage for the serialized catalog."""

from __future__ import annotations

import os
import sqlite3
import time
from pathlib import Path

import structlog

log = structlog.get_logger()

BOOKS_KEY = "library_books"
SHELVES_KEY = "library_shelves"


class KeyValueStorage:
    """Persist named JSON blobs in a local SQLite database.

    Mirrors browser local storage: string keys, string values, whole-value
    overwrites. Pass ``":memory:"`` for a throwaway store.
    """

    def __init__(self, db_path: Path | str | None = None):
        if db_path is None:
            db_path = Path(os.environ.get("LIBRARY_DB", ".data/library.db"))

        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._conn = sqlite3.connect(str(db_path))
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS storage (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at REAL
            )"""
        )
        self._conn.commit()

    def get(self, key: str) -> str | None:
        """Return the stored value for key, or None if it was never written."""
        row = self._conn.execute(
            "SELECT value FROM storage WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        return row[0]

    def set_many(self, items: dict[str, str]) -> None:
        """Write several keys in one commit."""
        now = time.time()
        self._conn.executemany(
            "INSERT OR REPLACE INTO storage (key, value, updated_at) VALUES (?, ?, ?)",
            [(key, value, now) for key, value in items.items()],
        )
        self._conn.commit()
        log.debug("storage_written", keys=list(items))

    def close(self) -> None:
        self._conn.close()
