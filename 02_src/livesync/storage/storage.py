"""SQLite storage implementation."""

import json
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from ..config import resolve_db_path


class IStorage(Protocol):
    """Durable local key/value persistence (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def get_value(self, key: str) -> Any | None:
        """Read and decode the JSON value stored under key."""
        ...

    async def set_value(self, key: str, value: Any) -> None:
        """Encode value as JSON and store it under key."""
        ...

    async def delete_value(self, key: str) -> None:
        """Remove key if present."""
        ...

    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite key/value storage."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def get_value(self, key: str) -> Any | None:
        """Read and decode the JSON value stored under key."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            "SELECT value FROM kv_store WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return json.loads(row[0])

    async def set_value(self, key: str, value: Any) -> None:
        """Encode value as JSON and store it under key."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            """,
            (key, json.dumps(value)),
        )
        await self._conn.commit()

    async def delete_value(self, key: str) -> None:
        """Remove key if present."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await self._conn.commit()

    async def clear(self) -> None:
        """Clear all data."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute("DELETE FROM kv_store")
        await self._conn.commit()
