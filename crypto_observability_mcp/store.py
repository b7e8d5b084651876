"""SQLite-backed persistent cache for REST/WS payloads and tool outputs.

Writes are insert-only. Reads pick the most recent row for a key and delete
it if it has expired. A single writer process is assumed.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from . import timeutils
from .hashing import compute_expiry, is_expired, sha256

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000

REST_CACHE = "rest_cache"
WS_CACHE = "ws_cache"
_CACHE_TABLES = frozenset({REST_CACHE, WS_CACHE})

_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS rest_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT NOT NULL,
        payload TEXT NOT NULL,
        expires_at INTEGER NOT NULL,
        created_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS ws_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT NOT NULL,
        payload TEXT NOT NULL,
        expires_at INTEGER NOT NULL,
        created_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tool_outputs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tool TEXT NOT NULL,
        input_hash TEXT NOT NULL,
        output TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS payload_hashes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        hash TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )""",
)


class CacheStore:
    """Embedded cache store over a single SQLite file."""

    def __init__(self, db_path: Union[str, Path] = "./data/mcp.sqlite") -> None:
        self._path = str(db_path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, timeout=20.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._migrate()

    @property
    def path(self) -> str:
        return self._path

    def _migrate(self) -> None:
        with self._lock, self._conn:
            if self._path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                self._conn.execute(statement)

    def close(self) -> None:
        self._conn.close()

    def table_names(self) -> list:
        rows = self._conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        return [row["name"] for row in rows]

    def set_cache(self, table: str, key: str, payload: str, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        _check_table(table)
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO {table} (key, payload, expires_at, created_at) VALUES (?, ?, ?, ?)",
                (key, payload, compute_expiry(ttl_ms), timeutils.now_ms()),
            )

    def get_cache(self, table: str, key: str) -> Optional[str]:
        _check_table(table)
        with self._lock, self._conn:
            row = self._conn.execute(
                f"SELECT * FROM {table} WHERE key = ? ORDER BY id DESC LIMIT 1", (key,)
            ).fetchone()
            if row is None:
                return None
            if is_expired(row["expires_at"]):
                self._conn.execute(f"DELETE FROM {table} WHERE id = ?", (row["id"],))
                logger.debug("Expired %s row for key %s", table, key)
                return None
            return row["payload"]

    def count_rows(self, table: str, key: str) -> int:
        _check_table(table)
        row = self._conn.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE key = ?", (key,)).fetchone()
        return int(row["n"])

    def cache_rest_response(self, key: str, payload: str, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        self.set_cache(REST_CACHE, key, payload, ttl_ms)

    def get_rest_cache(self, key: str) -> Optional[str]:
        return self.get_cache(REST_CACHE, key)

    def cache_ws_message(self, key: str, payload: str, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        self.set_cache(WS_CACHE, key, payload, ttl_ms)

    def get_ws_cache(self, key: str) -> Optional[str]:
        return self.get_cache(WS_CACHE, key)

    def set_tool_output(self, tool: str, tool_input: str, output: str) -> str:
        """Record a tool output keyed by the hash of its input; returns the hash."""
        input_hash = sha256(tool_input)
        created_at = timeutils.now_ms()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO tool_outputs (tool, input_hash, output, created_at) VALUES (?, ?, ?, ?)",
                (tool, input_hash, output, created_at),
            )
            self._conn.execute(
                "INSERT INTO payload_hashes (hash, created_at) VALUES (?, ?)",
                (input_hash, created_at),
            )
        return input_hash

    def get_tool_output(self, tool: str, tool_input: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT output FROM tool_outputs WHERE tool = ? AND input_hash = ? ORDER BY id DESC LIMIT 1",
            (tool, sha256(tool_input)),
        ).fetchone()
        return row["output"] if row else None

    def payload_hashes(self) -> list:
        rows = self._conn.execute("SELECT hash FROM payload_hashes ORDER BY id").fetchall()
        return [row["hash"] for row in rows]


def _check_table(table: str) -> None:
    if table not in _CACHE_TABLES:
        raise ValueError(f"Unknown cache table: {table}")
