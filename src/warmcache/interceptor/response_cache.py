"""
Named response caches.

A ResponseCacheStorage holds any number of named caches
("{appName}-{className}-{versionTag}"), each an insertion-ordered map from
URL to a stored response. Backed by aiosqlite so the interceptor and the
application can share one database file.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite
import orjson

from warmcache.exceptions import StorageError
from warmcache.logging import get_logger
from warmcache.types import Response, now_ms

logger = get_logger(__name__)


class ResponseCacheStorage:
    """Registry of named response caches."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the database and create tables. Safe to call twice."""
        if self._db is not None:
            return
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.db_path), timeout=30.0)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS caches (
                    name TEXT PRIMARY KEY,
                    created_at INTEGER NOT NULL
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS responses (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    cache_name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    headers TEXT NOT NULL,
                    body BLOB NOT NULL,
                    UNIQUE (cache_name, url)
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_responses_cache ON responses(cache_name, seq)"
            )
            await self._db.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(
                f"Failed to open response cache storage: {e}",
                context={"db_path": str(self.db_path), "operation": "open"},
            ) from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Response cache storage is not open")
        return self._db

    async def open_cache(self, name: str) -> ResponseCache:
        """Get a handle to a named cache, creating it if needed."""
        try:
            await self.conn().execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                (name, now_ms()),
            )
            await self.conn().commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": name, "operation": "open_cache"}) from e
        return ResponseCache(self, name)

    async def cache_names(self) -> list[str]:
        """List all named caches, oldest first."""
        try:
            async with self.conn().execute(
                "SELECT name FROM caches ORDER BY created_at ASC, name ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"operation": "cache_names"}) from e
        return [row["name"] for row in rows]

    async def delete_cache(self, name: str) -> bool:
        """Delete a named cache and its responses.

        Returns:
            True if the cache existed.
        """
        try:
            db = self.conn()
            cursor = await db.execute("DELETE FROM caches WHERE name = ?", (name,))
            existed = cursor.rowcount > 0
            await db.execute("DELETE FROM responses WHERE cache_name = ?", (name,))
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": name, "operation": "delete_cache"}) from e
        return existed


class ResponseCache:
    """Handle to one named response cache."""

    def __init__(self, storage: ResponseCacheStorage, name: str) -> None:
        self.storage = storage
        self.name = name

    async def match(self, url: str) -> Response | None:
        """Get the stored response for url, or None."""
        try:
            async with self.storage.conn().execute(
                "SELECT url, status, headers, body FROM responses "
                "WHERE cache_name = ? AND url = ?",
                (self.name, url),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name, "url": url}) from e

        if row is None:
            return None
        try:
            headers = orjson.loads(row["headers"])
        except orjson.JSONDecodeError as e:
            raise StorageError(
                "Corrupt cached headers", context={"cache": self.name, "url": url}
            ) from e
        return Response(
            url=row["url"], status=row["status"], headers=headers, body=bytes(row["body"])
        )

    async def put(self, url: str, response: Response) -> None:
        """Store a response, replacing and re-appending any previous one."""
        db = self.storage.conn()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO responses (cache_name, url, status, headers, body) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    self.name,
                    url,
                    response.status,
                    orjson.dumps(response.headers).decode("utf-8"),
                    response.body,
                ),
            )
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name, "url": url}) from e

    async def delete(self, url: str) -> bool:
        try:
            db = self.storage.conn()
            cursor = await db.execute(
                "DELETE FROM responses WHERE cache_name = ? AND url = ?", (self.name, url)
            )
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name, "url": url}) from e
        return cursor.rowcount > 0

    async def keys(self) -> list[str]:
        """List stored URLs in insertion order."""
        try:
            async with self.storage.conn().execute(
                "SELECT url FROM responses WHERE cache_name = ? ORDER BY seq ASC",
                (self.name,),
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name}) from e
        return [row["url"] for row in rows]

    async def count(self) -> int:
        try:
            async with self.storage.conn().execute(
                "SELECT COUNT(*) AS n FROM responses WHERE cache_name = ?", (self.name,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name}) from e
        return int(row["n"]) if row else 0

    async def total_size(self) -> int:
        """Sum of stored body sizes."""
        try:
            async with self.storage.conn().execute(
                "SELECT COALESCE(SUM(LENGTH(body)), 0) AS n FROM responses WHERE cache_name = ?",
                (self.name,),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), context={"cache": self.name}) from e
        return int(row["n"]) if row else 0
