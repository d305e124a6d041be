"""
SQLite queue backend.

Keeps the queue order and the currently-processing record in the catalog
database file: `queue(position, path, model, subtitle_stream_index)`
ordered by position and a single-row `currently_processing(path,
starting_time)`. Every operation runs in its own IMMEDIATE transaction,
which serializes writers across processes.
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Iterable, List, Optional, Tuple

from .base import QueueAdapter, merge_order
from ..cancellation import CancellationToken
from ..models import QueueEntry
from ..pipeline.util import AtciPaths, PathLike

logger = logging.getLogger("atci")

QUEUE_OVERRIDE_COLUMNS = (('model', 'TEXT'), ('subtitle_stream_index', 'INTEGER'))


class SqliteQueueAdapter(QueueAdapter):
    """Queue stored as tables in video_info.db"""

    def __init__(self, paths: Optional[AtciPaths] = None,
                 cancel_token: Optional[CancellationToken] = None):
        super().__init__(paths, cancel_token)
        self.db_path = self.paths.database
        self._bootstrap_schema()

    @contextmanager
    def _transaction(self):
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _bootstrap_schema(self):
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS queue (
                    position INTEGER PRIMARY KEY,
                    path TEXT NOT NULL,
                    model TEXT,
                    subtitle_stream_index INTEGER
                )
            """)
            columns = {row[1] for row in conn.execute("PRAGMA table_info(queue)").fetchall()}
            for column, kind in QUEUE_OVERRIDE_COLUMNS:
                if column not in columns:
                    conn.execute(f"ALTER TABLE queue ADD COLUMN {column} {kind}")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS currently_processing (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    path TEXT NOT NULL,
                    starting_time REAL NOT NULL
                )
            """)
        logger.debug(f"Queue schema ready in {self.db_path}")

    @staticmethod
    def _ordered(conn) -> List[str]:
        rows = conn.execute("SELECT path FROM queue ORDER BY position").fetchall()
        return [row[0] for row in rows]

    def get(self) -> List[str]:
        with self._transaction() as conn:
            return self._ordered(conn)

    @staticmethod
    def _ordered_entries(conn) -> List[QueueEntry]:
        rows = conn.execute(
            "SELECT path, model, subtitle_stream_index FROM queue ORDER BY position"
        ).fetchall()
        return [QueueEntry(path=row[0], model=row[1], subtitle_stream_index=row[2]) for row in rows]

    def entries(self) -> List[QueueEntry]:
        with self._transaction() as conn:
            return self._ordered_entries(conn)

    def append(self, path: PathLike, model: Optional[str] = None,
               subtitle_stream_index: Optional[int] = None) -> bool:
        path = str(path).strip()
        if not path:
            return False

        with self._transaction() as conn:
            processing = conn.execute(
                "SELECT 1 FROM currently_processing WHERE path = ?", (path,)
            ).fetchone()
            if processing:
                logger.debug(f"Not queueing {path}: currently processing")
                return False
            if conn.execute("SELECT 1 FROM queue WHERE path = ?", (path,)).fetchone():
                return False
            conn.execute(
                "INSERT INTO queue (position, path, model, subtitle_stream_index) "
                "VALUES ((SELECT COALESCE(MAX(position), 0) + 1 FROM queue), ?, ?, ?)",
                (path, model, subtitle_stream_index),
            )

        logger.info(f"QUEUED: {path}")
        return True

    def set(self, paths: Iterable[PathLike]) -> List[str]:
        with self._transaction() as conn:
            current = {entry.path: entry for entry in self._ordered_entries(conn)}
            merged = merge_order([str(p) for p in paths], current)
            conn.execute("DELETE FROM queue")
            conn.executemany(
                "INSERT INTO queue (position, path, model, subtitle_stream_index) VALUES (?, ?, ?, ?)",
                [
                    (position, path,
                     current[path].model if path in current else None,
                     current[path].subtitle_stream_index if path in current else None)
                    for position, path in enumerate(merged, start=1)
                ],
            )
        logger.info(f"Queue reordered: {len(merged)} entries")
        return merged

    def peek_head(self) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute("SELECT path FROM queue ORDER BY position LIMIT 1").fetchone()
        return row[0] if row else None

    def _take_head(self, claim: bool) -> Optional[QueueEntry]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT position, path, model, subtitle_stream_index "
                "FROM queue ORDER BY position LIMIT 1"
            ).fetchone()
            if row is None:
                return None
            if claim:
                conn.execute(
                    "INSERT OR REPLACE INTO currently_processing (id, path, starting_time) "
                    "VALUES (1, ?, ?)",
                    (row[1], time.time()),
                )
            conn.execute("DELETE FROM queue WHERE position = ?", (row[0],))
        return QueueEntry(path=row[1], model=row[2], subtitle_stream_index=row[3])

    def pop_head(self) -> Optional[str]:
        head = self._take_head(claim=False)
        return head.path if head else None

    def claim_head(self) -> Optional[QueueEntry]:
        return self._take_head(claim=True)

    def mark_processing(self, path: PathLike) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO currently_processing (id, path, starting_time) "
                "VALUES (1, ?, ?)",
                (str(path), time.time()),
            )

    def clear_processing(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM currently_processing")

    def processing(self) -> Optional[Tuple[str, float]]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT path, starting_time FROM currently_processing WHERE id = 1"
            ).fetchone()
        return (row[0], row[1]) if row else None
