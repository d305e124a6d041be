"""
Processing success/failure hooks.

The configured command is split on whitespace, never passed to a shell,
and run with the video path appended as its last argument. Hooks are fire
and forget: a background thread reaps the child and logs a non-zero exit.
"""

import logging
import subprocess
import threading
from typing import List, Optional

from .pipeline.util import PathLike

logger = logging.getLogger("atci")


def build_hook_argv(command: str, video_path: PathLike) -> Optional[List[str]]:
    """Tokenized hook command with the video path appended; None when unset"""
    tokens = (command or "").split()
    if not tokens:
        return None
    return tokens + [str(video_path)]


def _reap(process: subprocess.Popen, label: str, argv: List[str]) -> None:
    _stdout, stderr = process.communicate()
    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
        logger.warning(f"{label} command exited with status {process.returncode}: {' '.join(argv)} {detail}")
    else:
        logger.debug(f"{label} command finished: {' '.join(argv)}")


def run_hook(command: str, video_path: PathLike, label: str = "Hook") -> Optional[subprocess.Popen]:
    """
    Start a hook command without waiting for it.

    Args:
        command: Configured command line, may be empty
        video_path: Appended as the final argument
        label: Used in log lines ("Success", "Failure")

    Returns:
        The started process, or None when no command is configured or it
        could not be started
    """
    argv = build_hook_argv(command, video_path)
    if argv is None:
        return None

    logger.info(f"Running {label.lower()} command: {' '.join(argv)}")
    try:
        process = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"Failed to start {label.lower()} command {argv[0]}: {e}")
        return None

    reaper = threading.Thread(target=_reap, args=(process, label, argv), daemon=True)
    reaper.start()
    return process
