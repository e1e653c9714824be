"""
Durable key-value medium backed by SQLite.

Uses aiosqlite so every read and write is an await point. The same database
file may be opened by several contexts at once (application and
interceptor); there are no cross-key transactions, each write is atomic per
key and the last writer wins.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite

from warmcache.cache.base import StorageMedium
from warmcache.exceptions import StorageError
from warmcache.logging import get_logger

logger = get_logger(__name__)


class SqliteMedium(StorageMedium):
    """SQLite-backed durable medium.

    Rows carry an autoincrement sequence so keys() can report storage order;
    replacing a key is a single INSERT OR REPLACE, which moves it to the
    newest slot.
    """

    def __init__(self, db_path: str | Path, name: str = "durable") -> None:
        """Initialize the medium.

        Args:
            db_path: SQLite file path, or ":memory:".
            name: Medium name used in logs.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.name = name
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the connection and create the schema. Safe to call twice."""
        if self._db is not None:
            return

        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.db_path), timeout=30.0)
            if isinstance(self.db_path, Path):
                await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    value BLOB NOT NULL
                )
            """)
            await self._db.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(
                f"Failed to open durable medium: {e}",
                context={"db_path": str(self.db_path), "operation": "open"},
            ) from e

        logger.debug("Durable medium opened", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self, operation: str, key: str | None = None) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError(
                "Durable medium is not open",
                context={"operation": operation, "key": key},
            )
        return self._db

    async def get_item(self, key: str) -> bytes | None:
        db = self._conn("get", key)
        try:
            async with db.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"key": key, "operation": "get"}) from e
        return bytes(row[0]) if row else None

    async def set_item(self, key: str, value: bytes) -> None:
        db = self._conn("set", key)
        try:
            await db.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value)
            )
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"key": key, "operation": "set"}) from e

    async def remove_item(self, key: str) -> None:
        db = self._conn("remove", key)
        try:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"key": key, "operation": "remove"}) from e

    async def keys(self, prefix: str = "") -> list[str]:
        db = self._conn("keys")
        try:
            async with db.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY seq ASC",
                (len(prefix), prefix),
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"operation": "keys", "prefix": prefix}) from e
        return [row[0] for row in rows]
