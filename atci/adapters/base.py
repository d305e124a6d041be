"""
Abstract base class for the persistent work queue.

Defines the interface every queue backend implements, so the processor,
the watcher and the operator endpoints never see how the ordered list or
the currently-processing record is stored. The blocklist and the cancel
sentinel are plain files in the data area for every backend.
"""

import fcntl
import logging
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from ..cancellation import CancellationToken
from ..models import QueueEntry, QueueStatus
from ..pipeline.util import AtciPaths, PathLike

logger = logging.getLogger("atci")


@contextmanager
def exclusive_lock(target: Path) -> Iterator[None]:
    """Hold an advisory exclusive lock on <target>.lock for the block"""
    lock_path = target.with_name(target.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def read_lines(path: Path) -> List[str]:
    """Non-blank lines of a UTF-8 list file; a missing file reads as empty"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]
    except FileNotFoundError:
        return []


def write_lines(path: Path, lines: Iterable[str]) -> None:
    """Replace a list file atomically via a temp file and rename"""
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
        for line in lines:
            f.write(f"{line}\n")
    os.replace(tmp_path, path)


def merge_order(new_order: Iterable[str], current: Iterable[str]) -> List[str]:
    """
    Order `new_order` first, then any current entries it did not name.

    Duplicates and blank entries are dropped.
    """
    merged: List[str] = []
    seen = set()
    for path in list(new_order) + list(current):
        path = str(path).strip()
        if path and path not in seen:
            seen.add(path)
            merged.append(path)
    return merged


class QueueAdapter(ABC):
    """Abstract base class for queue backends"""

    def __init__(self, paths: Optional[AtciPaths] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self.paths = paths or AtciPaths()
        self.paths.ensure()
        self.cancel_token = cancel_token or CancellationToken(self.paths.cancel_file)

    @abstractmethod
    def get(self) -> List[str]:
        """
        Get the current queue order.

        Returns:
            List of absolute video paths, head first
        """
        pass

    @abstractmethod
    def entries(self) -> List[QueueEntry]:
        """Queue order with each entry's overrides, head first"""
        pass

    @abstractmethod
    def append(self, path: PathLike, model: Optional[str] = None,
               subtitle_stream_index: Optional[int] = None) -> bool:
        """
        Enqueue a path unless it is already queued or currently processing.

        Args:
            path: Absolute video path
            model: Speech-to-text model to use instead of the configured one
            subtitle_stream_index: Subtitle stream to extract instead of the first

        Returns:
            True if the path was added
        """
        pass

    @abstractmethod
    def set(self, paths: Iterable[PathLike]) -> List[str]:
        """
        Replace the queue order atomically.

        Entries currently queued but not named in `paths` are kept after
        the named ones, in their previous order.

        Returns:
            The resulting queue order
        """
        pass

    @abstractmethod
    def peek_head(self) -> Optional[str]:
        """Return the head without removing it, or None"""
        pass

    @abstractmethod
    def pop_head(self) -> Optional[str]:
        """Remove and return the head; None on an empty queue"""
        pass

    @abstractmethod
    def claim_head(self) -> Optional[QueueEntry]:
        """
        Mark the head as currently processing, then remove it from the queue.

        Both steps happen under the queue's lock, so an append racing with
        the claim always sees the path as either queued or processing.

        Returns:
            The claimed entry, or None on an empty queue
        """
        pass

    @abstractmethod
    def mark_processing(self, path: PathLike) -> None:
        """Record `path` as currently processing, stamped with the current time"""
        pass

    @abstractmethod
    def clear_processing(self) -> None:
        """Remove the currently-processing record"""
        pass

    @abstractmethod
    def processing(self) -> Optional[Tuple[str, float]]:
        """
        Get the currently-processing record.

        Returns:
            Tuple of (path, start time as POSIX seconds), or None
        """
        pass

    def is_processing(self, path: Optional[PathLike] = None) -> bool:
        """True if anything (or `path`, when given) is currently processing"""
        record = self.processing()
        if record is None:
            return False
        return path is None or record[0] == str(path)

    def status(self) -> QueueStatus:
        """Currently processing path, its age in seconds, and the queue"""
        record = self.processing()
        queue = self.get()
        if record is None:
            return QueueStatus(path=None, age_seconds=0, queue=queue)
        path, started = record
        age = max(0, int(time.time() - started))
        return QueueStatus(path=path, age_seconds=age, queue=queue)

    def block(self, path: PathLike) -> bool:
        """Append a path to the blocklist; returns False if already present"""
        path = str(path).strip()
        blocklist_file = self.paths.blocklist_file
        with exclusive_lock(blocklist_file):
            entries = read_lines(blocklist_file)
            if path in entries:
                return False
            with open(blocklist_file, "a", encoding="utf-8", newline="\n") as f:
                f.write(f"{path}\n")
        logger.info(f"Blocked: {path}")
        return True

    def blocklist(self) -> List[str]:
        return read_lines(self.paths.blocklist_file)

    def is_blocked(self, path: PathLike) -> bool:
        return str(path) in self.blocklist()

    def cancel(self) -> str:
        """Trip the cancel sentinel for the item in flight"""
        return self.cancel_token.trip()
