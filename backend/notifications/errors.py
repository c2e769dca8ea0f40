"""
Exceptions raised by the notification engine.

Routers translate these to HTTP status codes; batch operations catch
them per item and record the failure on the item instead.
"""

import sqlite3
from contextlib import contextmanager

import aiosqlite


class NotificationError(Exception):
    """Base class for notification engine errors."""


class NotFoundError(NotificationError):
    """A referenced appointment, notification or job does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ChannelDeliveryError(NotificationError):
    """A transport could not deliver on its channel."""


class JobExecutionError(NotificationError):
    """A scheduled job failed while executing."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


class PersistenceError(NotificationError):
    """The document store rejected a read or write."""


@contextmanager
def wrap_persistence(message: str):
    """Re-raise driver errors inside the block as PersistenceError.

    Example:
        with wrap_persistence("Failed to create reminder job"):
            await db.scheduled_jobs.insert_one(doc)
    """
    try:
        yield
    except (aiosqlite.Error, sqlite3.Error) as e:
        raise PersistenceError(f"{message}: {e}") from e
