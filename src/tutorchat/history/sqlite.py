"""SQLite key-value storage backend.

Provides persistent chat history storage using a SQLite database.
Uses aiosqlite for async access.
"""

import logging
import sqlite3
from pathlib import Path

import aiosqlite

from ..errors import StorageError, StorageQuotaError
from .base import KeyValueStorage, value_size

logger = logging.getLogger(__name__)


class SQLiteStorage(KeyValueStorage):
    """SQLite-backed key-value storage.

    Stores values in a single ``kv`` table. Supports persistent storage
    across sessions and an optional byte quota over all stored rows.
    """

    def __init__(
        self,
        path: str | Path = "./tutorchat_history.db",
        quota_bytes: int | None = None,
    ):
        self._db_path = Path(path).expanduser()
        self._quota_bytes = quota_bytes
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()
        logger.debug("Opened history database at %s", self._db_path)

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StorageError("SQLite storage is not connected. Call connect() first.")
        return self._connection

    async def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._require_connection()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise StorageError(f"SQLite read failed: {e}") from e

    async def get_item(self, key: str) -> str | None:
        rows = await self._query("SELECT value FROM kv WHERE key = ?", (key,))
        return rows[0][0] if rows else None

    async def _used_bytes(self, exclude_key: str) -> int:
        rows = await self._query("SELECT key, value FROM kv WHERE key != ?", (exclude_key,))
        return sum(value_size(k) + value_size(v) for k, v in rows)

    async def set_item(self, key: str, value: str) -> None:
        conn = self._require_connection()

        if self._quota_bytes is not None:
            used = await self._used_bytes(key)
            needed = value_size(key) + value_size(value)
            if used + needed > self._quota_bytes:
                raise StorageQuotaError(
                    f"Quota of {self._quota_bytes} bytes exceeded "
                    f"({used} used, {needed} requested)"
                )

        try:
            await conn.execute("""
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, (key, value))
            await conn.commit()
        except sqlite3.OperationalError as e:
            # SQLITE_FULL surfaces as "database or disk is full"
            if "full" in str(e).lower():
                raise StorageQuotaError(str(e)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    async def remove_item(self, key: str) -> None:
        conn = self._require_connection()
        try:
            await conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    async def keys(self) -> list[str]:
        rows = await self._query("SELECT key FROM kv ORDER BY key")
        return [row[0] for row in rows]

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
