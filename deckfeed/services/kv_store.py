from __future__ import annotations

import logging
import os
from typing import Iterable, List, Optional

import aiosqlite


class KeyValueStore:
    """
    SQLite-backed string key/value store.

    Holds the per-day deck id caches and the nearby-region cache. Values
    are opaque strings; callers own the encoding.
    """

    def __init__(self, db_path: str = "deck_cache.db"):
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)
        self._initialized = False
        # Note: call await initialize() before first use (get/set also do it lazily).

    async def initialize(self) -> None:
        """Create the kv table if missing."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            await db.commit()
        self._initialized = True

    async def _ensure(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def get(self, key: str) -> Optional[str]:
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cur.fetchone()
            await cur.close()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            await db.commit()

    async def remove(self, key: str) -> None:
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()

    async def list_keys_with_prefix(self, prefix: str) -> List[str]:
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            # substr() instead of LIKE so '%' and '_' in keys match literally
            cur = await db.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            rows = await cur.fetchall()
            await cur.close()
        return [r[0] for r in rows]

    async def remove_many(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        await self._ensure()
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])
            await db.commit()
        self.logger.debug(f"Removed {len(keys)} cache keys")
        return len(keys)
