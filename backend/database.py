"""
Database connection module: SQLite backend.

Provides connect/disconnect lifecycle and get_database() accessor.
Routers, the poll loop and the CLI runner all use get_database() to get
a collection-style API (find, insert_one, update_one, etc.) backed by a
single SQLite file.

Typical usage:
    from database import get_database
    db = get_database()
    job = await db.scheduled_jobs.find_one({"entityId": appointment_id})
"""

import logging
from typing import Optional

from config import get_settings
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)

# ============================================================
# Global database instance
# ============================================================
_database: Optional[SQLiteDatabase] = None


async def connect_db(db_path: Optional[str] = None) -> SQLiteDatabase:
    """Initialize the SQLite database connection.

    Called once during application startup (main.py lifespan) or by the
    process_jobs.py runner. Creates the database file if it doesn't exist.

    Args:
        db_path: Override for settings.sqlite_db_path.

    Returns:
        The connected database.
    """
    global _database

    db_path = db_path or get_settings().sqlite_db_path
    logger.info(f"Connecting to SQLite database: {db_path}")

    _database = SQLiteDatabase(db_path)
    await _database.connect()

    logger.info("SQLite database connected successfully")
    return _database


async def close_db() -> None:
    """Close the database connection gracefully.

    Called during application shutdown.
    """
    global _database
    if _database:
        await _database.close()
        _database = None
        logger.info("Database connection closed")


def get_database() -> SQLiteDatabase:
    """Get the database instance.

    Returns:
        SQLiteDatabase with collection-style API (db.notifications, etc.)

    Raises:
        RuntimeError: If connect_db() hasn't been called yet.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_db() first.")
    return _database
