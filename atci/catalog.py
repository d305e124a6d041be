"""
SQLite catalog of discovered videos.

The catalog is a view of disk state: it is rebuilt wholesale from the watch
roots and never treated as the source of truth. Readers open their own
connection; only the processor and explicit rebuilds write.
"""

import logging
import math
import os
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ValidationError
from .models import CatalogPage, VideoInfo, VideoPart
from .pipeline.metadata import read_transcript
from .pipeline.util import PathLike, format_datetime, iter_video_files, transcript_path_for

logger = logging.getLogger("atci")

# Bump to drop and recreate video_info on the next open
SCHEMA_VERSION = "2025.09.3"

SORT_COLUMNS = ("base_name", "created_at", "last_generated", "line_count", "length", "source")

DEFAULT_PAGE_LIMIT = 50

VIDEO_INFO_COLUMNS = (
    "name", "base_name", "created_at", "line_count", "full_path",
    "transcript", "last_generated", "length", "source",
)


def _py_lower(value):
    return value.lower() if isinstance(value, str) else value


@contextmanager
def get_connection(db_path: PathLike):
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    # SQLite's lower() only folds ASCII
    conn.create_function("py_lower", 1, _py_lower, deterministic=True)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_video_info(row: sqlite3.Row) -> VideoInfo:
    return VideoInfo(
        name=row["name"],
        base_name=row["base_name"],
        created_at=row["created_at"],
        line_count=row["line_count"],
        full_path=row["full_path"],
        transcript=bool(row["transcript"]),
        last_generated=row["last_generated"],
        length=row["length"],
        source=row["source"],
    )


def _filter_clause(filters: Optional[Sequence[str]]):
    """WHERE clause for a case-insensitive substring disjunction over full_path"""
    terms = [f.strip().lower() for f in (filters or []) if f and f.strip()]
    if not terms:
        return "", []
    clause = " OR ".join("instr(py_lower(full_path), ?) > 0" for _ in terms)
    return f"WHERE ({clause})", terms


def describe_video(video_path: Path, watch_root: Path) -> VideoInfo:
    """Build one catalog row from disk state"""
    stat = video_path.stat()
    created = getattr(stat, "st_birthtime", None) or stat.st_mtime

    try:
        name = str(video_path.relative_to(watch_root))
    except ValueError:
        name = str(video_path)

    transcript_path = transcript_path_for(video_path)
    line_count = 0
    last_generated = None
    length = None
    source = None
    has_transcript = transcript_path.exists()
    if has_transcript:
        meta, body = read_transcript(transcript_path)
        line_count = len(body.splitlines())
        length = meta.get("length")
        source = meta.get("source")
        try:
            last_generated = format_datetime(transcript_path.stat().st_mtime)
        except OSError:
            last_generated = None

    return VideoInfo(
        name=name,
        base_name=video_path.stem,
        created_at=format_datetime(created),
        line_count=line_count,
        full_path=str(video_path),
        transcript=has_transcript,
        last_generated=last_generated,
        length=length,
        source=source,
    )


class Catalog:
    """Video info store backed by video_info.db"""

    def __init__(self, db_path: PathLike, watch_directories: Iterable[PathLike] = (),
                 max_workers: Optional[int] = None):
        self.db_path = Path(db_path)
        self.watch_directories = [Path(d) for d in watch_directories]
        self.max_workers = max_workers or min(32, (os.cpu_count() or 1) + 4)
        self._bootstrap_schema()

    def _bootstrap_schema(self):
        """Create tables, dropping video_info when the schema version changed"""
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("CREATE TABLE IF NOT EXISTS schema_version (version TEXT PRIMARY KEY)")
            row = cursor.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            current = row["version"] if row else None

            if current != SCHEMA_VERSION:
                if current is not None:
                    logger.info(f"Catalog schema {current} -> {SCHEMA_VERSION}, recreating")
                cursor.execute("DROP TABLE IF EXISTS video_info")
                cursor.execute("DELETE FROM schema_version")
                cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS video_info (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    base_name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    line_count INTEGER NOT NULL,
                    full_path TEXT NOT NULL UNIQUE,
                    transcript BOOLEAN NOT NULL,
                    last_generated TEXT,
                    length TEXT,
                    source TEXT
                )
            """)

    def ping(self) -> bool:
        """True if the database answers a trivial query"""
        try:
            with get_connection(self.db_path) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Catalog unreachable: {e}")
            return False

    # ==================== Rebuild ====================

    def _scan_root(self, watch_root: Path) -> List[VideoInfo]:
        infos = []
        for video_path in iter_video_files(watch_root):
            try:
                if not video_path.is_file():
                    continue
                infos.append(describe_video(video_path, watch_root))
            except OSError as e:
                logger.debug(f"Skipping {video_path}: {e}")
        return infos

    def scan(self) -> List[VideoInfo]:
        """Scan every watch root in parallel; later roots win on overlapping paths"""
        by_path: Dict[str, VideoInfo] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for infos in executor.map(self._scan_root, self.watch_directories):
                for info in infos:
                    by_path[info.full_path] = info
        return list(by_path.values())

    def rebuild(self) -> int:
        """
        Replace every row with a fresh scan of the watch roots.

        Returns:
            Number of rows written
        """
        infos = self.scan()
        placeholders = ", ".join("?" for _ in VIDEO_INFO_COLUMNS)
        with get_connection(self.db_path) as conn:
            conn.execute("DELETE FROM video_info")
            conn.executemany(
                f"INSERT OR REPLACE INTO video_info ({', '.join(VIDEO_INFO_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [
                    (i.name, i.base_name, i.created_at, i.line_count, i.full_path,
                     i.transcript, i.last_generated, i.length, i.source)
                    for i in infos
                ],
            )
        logger.info(f"Catalog rebuilt: {len(infos)} videos")
        return len(infos)

    # ==================== Reads ====================

    def list(self, filters: Optional[Sequence[str]] = None, page: int = 0,
             limit: int = DEFAULT_PAGE_LIMIT, sort_by: str = "created_at",
             ascending: bool = False) -> CatalogPage:
        """
        Get one page of catalog rows.

        Args:
            filters: Substrings matched case-insensitively against full_path; any may match
            page: Zero-based page index
            limit: Rows per page
            sort_by: One of SORT_COLUMNS
            ascending: Sort direction

        Returns:
            CatalogPage with the rows and paging totals
        """
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Unsupported sort column: {sort_by}")
        if limit <= 0:
            raise ValidationError("limit must be positive")
        page = max(0, page)

        where, params = _filter_clause(filters)
        direction = "ASC" if ascending else "DESC"

        with get_connection(self.db_path) as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM video_info {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM video_info {where} "
                f"ORDER BY {sort_by} {direction}, full_path ASC LIMIT ? OFFSET ?",
                params + [limit, page * limit],
            ).fetchall()

        total_pages = max(1, math.ceil(total / limit))
        return CatalogPage(
            items=[_row_to_video_info(row) for row in rows],
            page=page,
            limit=limit,
            total_pages=total_pages,
            total_records=total,
        )

    def all(self, filters: Optional[Sequence[str]] = None) -> List[VideoInfo]:
        """Every row matching the filter, newest first"""
        where, params = _filter_clause(filters)
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM video_info {where} ORDER BY created_at DESC, full_path ASC", params
            ).fetchall()
        return [_row_to_video_info(row) for row in rows]

    def get(self, full_path: PathLike) -> Optional[VideoInfo]:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM video_info WHERE full_path = ?", (str(full_path),)
            ).fetchone()
        return _row_to_video_info(row) if row else None

    def sources(self) -> List[str]:
        """Distinct non-empty transcript sources"""
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT DISTINCT source FROM video_info "
                "WHERE source IS NOT NULL AND source != '' ORDER BY source"
            ).fetchall()
        return [row["source"] for row in rows]


class VideoPartsStore:
    """Tracking records for processed parts of multi-part videos"""

    def __init__(self, db_path: PathLike):
        self.db_path = Path(db_path)
        with get_connection(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS video_parts (
                    base_name TEXT NOT NULL,
                    part_number INTEGER NOT NULL,
                    video_path TEXT NOT NULL,
                    processed_at TEXT NOT NULL,
                    transcript_length INTEGER NOT NULL,
                    PRIMARY KEY (base_name, part_number)
                )
            """)

    def processed_parts(self, base_name: str) -> List[int]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT part_number FROM video_parts WHERE base_name = ? ORDER BY part_number",
                (base_name,),
            ).fetchall()
        return [row["part_number"] for row in rows]

    def is_processed(self, base_name: str, part_number: int) -> bool:
        return part_number in self.processed_parts(base_name)

    def missing_parts(self, base_name: str, up_to: int) -> List[int]:
        """Part numbers in 1..up_to with no tracking record"""
        processed = set(self.processed_parts(base_name))
        return [n for n in range(1, up_to + 1) if n not in processed]

    def record(self, part: VideoPart, transcript_length: int) -> None:
        processed_at = datetime.now(timezone.utc).isoformat()
        with get_connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO video_parts "
                "(base_name, part_number, video_path, processed_at, transcript_length) "
                "VALUES (?, ?, ?, ?, ?)",
                (part.base_name, part.part_number, part.video_path, processed_at, transcript_length),
            )
        logger.debug(f"Recorded part {part.part_number} of {part.base_name}")
