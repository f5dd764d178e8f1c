"""Key/value blob storage backed by SQLite.

Holds opaque string values under string keys, one row per key. The chat
client keeps its whole session set under a single key.
"""

import logging

import aiosqlite

from playground.db.database import get_db
from playground.errors import PersistenceError

logger = logging.getLogger(__name__)


class LocalStorage:
    """Durable string storage with get/set/remove semantics."""

    async def get_item(self, key: str) -> str | None:
        """Read the value stored under key.

        Returns:
            The stored string, or None if the key is absent.

        Raises:
            PersistenceError: If the database cannot be read.
        """
        try:
            db = await get_db()
            cursor = await db.execute(
                "SELECT value FROM local_storage WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        return row["value"] if row else None

    async def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value.

        Raises:
            PersistenceError: If the write fails.
        """
        try:
            db = await get_db()
            await db.execute(
                """
                INSERT INTO local_storage (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            await db.commit()
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

        logger.debug(f"Stored {len(value)} chars under '{key}'")

    async def remove_item(self, key: str) -> None:
        """Delete key if present.

        Raises:
            PersistenceError: If the delete fails.
        """
        try:
            db = await get_db()
            await db.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            await db.commit()
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to remove '{key}': {e}") from e

    async def is_enabled(self) -> bool:
        """Check that storage is usable by writing and removing a probe key."""
        probe = "__local_storage_test__"
        try:
            await self.set_item(probe, probe)
            await self.remove_item(probe)
        except PersistenceError:
            return False
        return True
