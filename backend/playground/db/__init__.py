"""Database module."""

from playground.db.database import close_database, database_path, get_db, init_database
from playground.db.local_storage import LocalStorage

__all__ = ["get_db", "init_database", "close_database", "database_path", "LocalStorage"]
