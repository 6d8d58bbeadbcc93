"""Two-level stats payload cache: in-memory LRU + SQLite persistent."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS payloads (
    kind TEXT NOT NULL,
    name TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at REAL NOT NULL,
    PRIMARY KEY (kind, name)
);
CREATE INDEX IF NOT EXISTS idx_created_at ON payloads(created_at);
"""

CacheKey = tuple[str, str]  # (kind, lowercased player name)

DEFAULT_TTL = 10 * 60  # 10 minutes
DEFAULT_MEMORY_SIZE = 500
DEFAULT_DB_PATH = "stats_cache.db"


class StatsCache:
    """Two-level cache for raw API payloads ("player", "guild", ...).

    Level 1: In-memory LRU OrderedDict (fast, volatile).
    Level 2: SQLite database (persistent, survives restart).
    """

    def __init__(
        self,
        db_path: str | Path = DEFAULT_DB_PATH,
        memory_size: int = DEFAULT_MEMORY_SIZE,
        ttl: float = DEFAULT_TTL,
    ) -> None:
        self._memory_size = memory_size
        self._ttl = ttl
        self._memory: OrderedDict[CacheKey, tuple[Any, float]] = OrderedDict()
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.executescript(_SCHEMA)

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, kind: str, name: str, max_age: float | None = None) -> Any | None:
        """Look up a payload. Returns None on miss or if older than max_age (default TTL)."""
        key: CacheKey = (kind, name.lower())
        max_age = self._ttl if max_age is None else max_age

        with self._lock:
            # Level 1: memory
            if key in self._memory:
                value, created_at = self._memory[key]
                if time.time() - created_at <= max_age:
                    self._memory.move_to_end(key)
                    return value

            # Level 2: SQLite
            row = self._conn.execute(
                "SELECT payload, created_at FROM payloads WHERE kind = ? AND name = ?",
                key,
            ).fetchone()

        if row is None:
            return None

        payload, created_at = row
        if time.time() - created_at > max_age:
            return None

        try:
            value = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Corrupt cached %s payload for %s", kind, name)
            return None

        with self._lock:
            self._memory_put(key, value, created_at)
        return value

    def put(self, kind: str, name: str, value: Any) -> None:
        """Store a JSON-serialisable payload in both cache levels."""
        key: CacheKey = (kind, name.lower())
        now = time.time()
        with self._lock:
            self._memory_put(key, value, now)
            self._conn.execute(
                "INSERT OR REPLACE INTO payloads (kind, name, payload, created_at) "
                "VALUES (?, ?, ?, ?)",
                (*key, json.dumps(value), now),
            )
            self._conn.commit()

    def _memory_put(self, key: CacheKey, value: Any, created_at: float) -> None:
        """Add to memory LRU, evicting oldest if full."""
        if key in self._memory:
            self._memory.move_to_end(key)
        elif len(self._memory) >= self._memory_size:
            self._memory.popitem(last=False)
        self._memory[key] = (value, created_at)

    def cleanup(self) -> int:
        """Remove expired entries from SQLite. Returns count of deleted rows."""
        cutoff = time.time() - self._ttl
        with self._lock:
            cursor = self._conn.execute("DELETE FROM payloads WHERE created_at < ?", (cutoff,))
            self._conn.commit()
        deleted = cursor.rowcount
        if deleted:
            logger.info("Cleaned up %d expired payloads", deleted)
        return deleted

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            self._conn.execute("DELETE FROM payloads")
            self._conn.commit()

    def stats(self) -> dict[str, int]:
        """Return cache statistics."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM payloads").fetchone()
        return {
            "memory_entries": len(self._memory),
            "memory_max": self._memory_size,
            "db_entries": row[0] if row else 0,
        }

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()
