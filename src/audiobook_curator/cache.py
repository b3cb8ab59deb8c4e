"""Opaque key/value cache shared by all workers.

Two implementations of the same small interface (get, set, clear):

    SqliteCache -- persistent, WAL-mode SQLite with per-thread connections.
    MemoryCache -- in-process dict behind a lock (tests, --no-cache runs).

Values must be JSON-serializable. Every set commits before returning, so a
get for the same key from any thread afterwards sees the new value. Errors
surface as CacheError; callers decide whether they are fatal.
"""

from __future__ import annotations

import base64
import json
import re
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from .errors import CacheError

log = logger.bind(stage="cache")

_SCHEMA = """\
PRAGMA journal_mode=WAL;
PRAGMA busy_timeout=5000;

CREATE TABLE IF NOT EXISTS entries (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _slug(text: str) -> str:
    return re.sub(r"\s+", "_", text.strip().lower())


def book_key(group_id: str) -> str:
    """Cache key for a reconciled record, by group identity (the collector's path hash)."""
    return f"book_{group_id}"


def cover_key(group_id: str) -> str:
    return f"cover_{group_id}"


def source_key(source: str, title: str, author: str) -> str:
    """Cache key for one source's lookup of (title, author)."""
    return f"{source}_{_slug(title)}_{_slug(author)}"


def encode_cover(data: bytes, mime_type: str) -> dict[str, str]:
    """Pack cover bytes into a JSON-safe cache value."""
    return {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}


def decode_cover(value: Any) -> tuple[bytes, str] | None:
    """Unpack a cache value written by encode_cover."""
    if not isinstance(value, dict) or "data" not in value:
        return None
    try:
        data = base64.b64decode(value["data"])
    except (ValueError, TypeError):
        return None
    return data, value.get("mime_type") or "image/jpeg"


class Cache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def clear(self) -> None: ...


class MemoryCache:
    """Thread-safe in-memory cache. Values round-trip through JSON like SqliteCache."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value for {key!r} is not serializable: {e}") from e
        with self._lock:
            self._data[key] = raw

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class SqliteCache:
    """SQLite-backed cache.

    Thread-safe: each thread gets its own connection via threading.local().
    The database uses WAL mode for concurrent readers + single writer.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._local = threading.local()
        try:
            conn = self._get_conn()
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cannot open cache at {db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a per-thread SQLite connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
        return conn

    def close(self) -> None:
        """Close the current thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def get(self, key: str) -> Any | None:
        try:
            row = self._get_conn().execute(
                "SELECT value FROM entries WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Cache read failed for {key!r}: {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise CacheError(f"Corrupt cache entry {key!r}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value for {key!r} is not serializable: {e}") from e
        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT INTO entries (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                  updated_at = excluded.updated_at""",
                (key, raw, _utcnow()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cache write failed for {key!r}: {e}") from e

    def clear(self) -> None:
        conn = self._get_conn()
        try:
            deleted = conn.execute("DELETE FROM entries").rowcount
            conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cache clear failed: {e}") from e
        log.info(f"Cache cleared ({deleted} entries)")
