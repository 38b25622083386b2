"""Key-value storage for persisted engine state.

SqliteStore keeps one JSON document per key in a single table; MemoryStore is
the in-process stand-in used by tests and by ``--no-persist`` runs.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

import aiosqlite

from .logs import get_logger

logger = get_logger("store")


class KeyValueStore(Protocol):
    async def init(self) -> None: ...

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Values are round-tripped through JSON like SqliteStore."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def init(self) -> None:
        return None

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class SqliteStore:
    """JSON documents in a ``kv_state`` table, one connection per call."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @staticmethod
    async def init_tables(db: aiosqlite.Connection):
        await db.execute("""
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    async def init(self) -> None:
        """Create the database file and table if missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await self.init_tables(db)
            await db.commit()
        logger.info(f"State store ready at {self.db_path}")

    async def get(self, key: str) -> Optional[Any]:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            cursor = await db.execute("SELECT value FROM kv_state WHERE key = ?", (key,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def set(self, key: str, value: Any) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await db.execute("""
                INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (key, json.dumps(value), datetime.now().isoformat()))
            await db.commit()

    async def remove(self, key: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await db.execute("DELETE FROM kv_state WHERE key = ?", (key,))
            await db.commit()
