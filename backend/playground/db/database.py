"""SQLite database connection and schema initialization."""

import os
from pathlib import Path

import aiosqlite

DEFAULT_DATABASE_PATH = "./data/playground.db"

# Global connection holder
_db_connection: aiosqlite.Connection | None = None


def database_path() -> str:
    """Database location from DATABASE_PATH, with a local default."""
    return os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables."""
    # Key/value blobs, one row per storage key
    await db.execute("""
        CREATE TABLE IF NOT EXISTS local_storage (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.commit()
