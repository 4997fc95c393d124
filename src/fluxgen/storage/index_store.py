"""Expiring key-value index used for the generation history.

The index supports exactly what the history feature needs:

- ``put`` with a time-to-live
- ``get`` by key
- prefix enumeration (``list_keys``), with **no ordering guarantee**

Expired entries are invisible to reads and are deleted by
:meth:`IndexStore.purge_expired`; the SQLite backend runs the purge
opportunistically on writes, so no background sweep is needed.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class IndexStore(ABC):
    """Abstract expiring key-value store with prefix listing."""

    @abstractmethod
    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        """Store *value* under *key*, replacing any existing value.

        The entry expires after *ttl_seconds* if given.
        """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the live value under *key*, or ``None``."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return the live keys starting with *prefix*, in no particular order."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete expired entries and return how many were removed."""


class SqliteIndexStore(IndexStore):
    """Index store persisted in a single SQLite file.

    Each operation opens its own connection, so the store holds no
    process-wide connection state and is safe to call from worker threads.
    """

    def __init__(self, db_path: Path, clock=time.time) -> None:
        """Initialize the index database.

        Args:
            db_path: Path to the SQLite database file.
            clock: Callable returning the current epoch time in seconds.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._initialize_db()
        logger.info("Initialized index store at %s", self.db_path)

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_entries_expires_at
                ON entries(expires_at)
                """)
            conn.commit()

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        await asyncio.to_thread(self._put_sync, key, value, ttl_seconds)

    def _put_sync(self, key: str, value: str, ttl_seconds: int | None) -> None:
        now = self._clock()
        expires_at = now + ttl_seconds if ttl_seconds is not None else None
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            conn.execute(
                "INSERT OR REPLACE INTO entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, expires_at),
            )
            conn.commit()

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get_sync, key)

    def _get_sync(self, key: str) -> str | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT value FROM entries
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._clock()),
            ).fetchone()
        return row[0] if row else None

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list_keys_sync, prefix)

    def _list_keys_sync(self, prefix: str) -> list[str]:
        # substr() instead of LIKE so '%' and '_' in the prefix match literally.
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT key FROM entries
                WHERE substr(key, 1, ?) = ?
                  AND (expires_at IS NULL OR expires_at > ?)
                """,
                (len(prefix), prefix, self._clock()),
            ).fetchall()
        return [row[0] for row in rows]

    async def purge_expired(self) -> int:
        return await asyncio.to_thread(self._purge_sync)

    def _purge_sync(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            conn.commit()
            removed = cursor.rowcount
        if removed:
            logger.info("Purged %d expired index entries.", removed)
        return removed
