"""
Single-instance enforcement per configuration.

Each long-running process owns an empty file atci.<config-sha>.<pid>.pid
in the data area. On start, files of dead processes are reclaimed and
live peers either abort the start or, with takeover, are terminated.
"""

import logging
import os
import re
import signal
import time
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import AtciError
from .pipeline.util import PathLike

logger = logging.getLogger("atci")


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


class PidFileManager:
    """PID files scoped to one configuration path"""

    def __init__(self, atci_dir: PathLike, config_sha: str, pid: Optional[int] = None):
        self.atci_dir = Path(atci_dir)
        self.config_sha = config_sha
        self.pid = pid if pid is not None else os.getpid()
        self._pattern = re.compile(rf'^atci\.{re.escape(config_sha)}\.(\d+)\.pid$')

    @property
    def path(self) -> Path:
        return self.atci_dir / f"atci.{self.config_sha}.{self.pid}.pid"

    def existing(self) -> List[Tuple[int, Path]]:
        """PID files of other processes for this configuration"""
        if not self.atci_dir.is_dir():
            return []
        found = []
        for entry in self.atci_dir.iterdir():
            match = self._pattern.match(entry.name)
            if not match:
                continue
            pid = int(match.group(1))
            if pid != self.pid:
                found.append((pid, entry))
        return sorted(found)

    def _terminate_peer(self, pid: int, wait_sec: float) -> None:
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        deadline = time.time() + wait_sec
        while time.time() < deadline and is_process_running(pid):
            time.sleep(0.1)
        if is_process_running(pid):
            logger.warning(f"Process {pid} did not exit after SIGTERM")
        else:
            logger.info(f"Terminated previous process {pid}")

    def acquire(self, takeover: bool = False, wait_sec: float = 5.0) -> Path:
        """
        Reclaim stale files, deal with live peers and create our own file.

        Args:
            takeover: Terminate live peers instead of refusing to start
            wait_sec: How long to wait for each terminated peer to exit

        Raises:
            AtciError: if a live peer exists and takeover is False
        """
        live = []
        for pid, pid_path in self.existing():
            if is_process_running(pid):
                live.append((pid, pid_path))
            else:
                logger.info(f"Removing stale PID file {pid_path.name}")
                pid_path.unlink(missing_ok=True)

        if live:
            pids = ", ".join(str(pid) for pid, _ in live)
            if not takeover:
                raise AtciError(f"Another atci process is already running (PID: {pids})")
            logger.warning(f"Taking over from running process(es): {pids}")
            for pid, pid_path in live:
                self._terminate_peer(pid, wait_sec)
                pid_path.unlink(missing_ok=True)

        self.atci_dir.mkdir(parents=True, exist_ok=True)
        self.path.touch()
        logger.info(f"Created PID file: {self.path} (PID: {self.pid})")
        return self.path

    def release(self) -> None:
        try:
            self.path.unlink()
            logger.debug(f"Removed PID file {self.path}")
        except FileNotFoundError:
            pass

    def __enter__(self) -> 'PidFileManager':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
