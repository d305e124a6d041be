"""
Queue backends for the ingestion pipeline.

This module provides the abstract queue interface and its two
implementations: plain line files in the data area, and tables in the
catalog's SQLite database.
"""

from .base import QueueAdapter
from .file_queue import FileQueueAdapter
from .sqlite_queue import SqliteQueueAdapter

__all__ = [
    'QueueAdapter',
    'FileQueueAdapter',
    'SqliteQueueAdapter',
    'create_queue',
]


def create_queue(backend: str = "file", paths=None, cancel_token=None) -> QueueAdapter:
    """Build the queue backend named in the configuration"""
    if backend == "sqlite":
        return SqliteQueueAdapter(paths, cancel_token)
    return FileQueueAdapter(paths, cancel_token)
