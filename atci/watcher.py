"""
Directory watcher.

Periodically walks the watch roots and enqueues recognized videos that
have no transcript yet, skipping blocklisted paths and files modified
within the quiet period (likely still being copied).
"""

import logging
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional

from .adapters.base import QueueAdapter
from .pipeline.util import PathLike, iter_video_files, transcript_path_for

logger = logging.getLogger("atci")


class DirectoryWatcher:
    """Scans watch roots and feeds the queue"""

    def __init__(self, queue: QueueAdapter, watch_directories: Iterable[PathLike],
                 quiet_period_sec: float = 3.0, interval_sec: float = 2.0):
        self.queue = queue
        self.watch_directories = [Path(d) for d in watch_directories]
        self.quiet_period_sec = quiet_period_sec
        self.interval_sec = interval_sec
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def scan_once(self, now: Optional[float] = None) -> List[str]:
        """
        Run one scan over every watch root.

        Returns:
            Paths newly added to the queue
        """
        now = time.time() if now is None else now
        blocked = set(self.queue.blocklist())
        added = []

        for watch_root in self.watch_directories:
            if not watch_root.is_dir():
                logger.debug(f"Watch directory missing, skipping: {watch_root}")
                continue
            for video_path in iter_video_files(watch_root):
                path_str = str(video_path)
                if path_str in blocked:
                    continue
                try:
                    mtime = video_path.stat().st_mtime
                    if now - mtime < self.quiet_period_sec:
                        continue
                    if transcript_path_for(video_path).exists():
                        continue
                    if self.queue.append(path_str):
                        added.append(path_str)
                except OSError as e:
                    logger.debug(f"Skipping {video_path}: {e}")

        return added

    def run(self) -> None:
        """Scan until stop() is called"""
        logger.info(f"Watching {len(self.watch_directories)} directories every {self.interval_sec}s")
        while not self._stop_event.is_set():
            try:
                self.scan_once()
            except Exception as e:
                logger.error(f"Watcher scan failed: {e}", exc_info=True)
            self._stop_event.wait(self.interval_sec)
        logger.info("Watcher stopped")

    def start(self) -> threading.Thread:
        """Run the watcher loop in a daemon thread"""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="atci-watcher", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
