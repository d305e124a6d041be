"""
Cooperative cancellation.

The token trips when either the in-process event is set or the filesystem
sentinel exists, so an operator in another process (touching the CANCEL
file) and code in this process (calling trip()) abort the same work.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("atci")


class CancellationToken:
    """Filesystem sentinel paired with an in-process event"""

    def __init__(self, sentinel_path: Path):
        self.sentinel_path = Path(sentinel_path)
        self._event = threading.Event()

    def is_cancelled(self) -> bool:
        return self._event.is_set() or self.sentinel_path.exists()

    def trip(self) -> str:
        """
        Request cancellation of the in-flight item.

        Returns:
            A human readable message telling whether the sentinel was
            created now or already existed.
        """
        self._event.set()
        if self.sentinel_path.exists():
            created = self.created_at()
            stamp = created.strftime("%Y-%m-%d %H:%M:%S UTC") if created else "unknown time"
            return f"CANCEL file already exists, created at: {stamp}"

        self.sentinel_path.parent.mkdir(parents=True, exist_ok=True)
        self.sentinel_path.touch()
        logger.info(f"Cancel sentinel created: {self.sentinel_path}")
        return "Created CANCEL file"

    def consume(self) -> None:
        """Clear both forms of the signal after the in-flight item is cleaned up"""
        self._event.clear()
        try:
            self.sentinel_path.unlink()
            logger.debug(f"Cancel sentinel consumed: {self.sentinel_path}")
        except FileNotFoundError:
            pass

    def created_at(self) -> Optional[datetime]:
        try:
            mtime = self.sentinel_path.stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)
