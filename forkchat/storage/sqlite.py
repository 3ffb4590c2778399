"""Async SQLite key-value store with WAL mode and schema initialization."""

import aiosqlite

from forkchat.storage.base import KeyValueStore

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);
"""


class SqliteKeyValueStore(KeyValueStore):
    """Thin async wrapper around aiosqlite holding one ``kv`` table."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection

    @classmethod
    async def connect(cls, path: str = "forkchat.db") -> "SqliteKeyValueStore":
        """Create a connection with WAL mode and schema init."""
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=5000")
        store = cls(conn)
        await store._ensure_schema()
        return store

    async def _ensure_schema(self) -> None:
        """Create the table if it doesn't exist. Idempotent."""
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()

    async def get(self, key: str) -> bytes | None:
        cursor = await self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return bytes(row["value"]) if row is not None else None

    async def set(self, key: str, value: bytes) -> None:
        await self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?)"
            " ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, bytes(value)),
        )
        await self._conn.commit()

    async def delete(self, key: str) -> bool:
        cursor = await self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        await self._conn.commit()
        return cursor.rowcount > 0

    async def keys(self, prefix: str = "") -> list[str]:
        # substr() instead of LIKE so '_' and '%' in prefixes match literally
        cursor = await self._conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return [row["key"] for row in await cursor.fetchall()]

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()
