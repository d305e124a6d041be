import math
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

PathLike = Union[str, Path]

VIDEO_EXTENSIONS = ("mp4", "avi", "mov", "mkv", "wmv", "flv", "webm", "m4v")

TRANSCRIPT_EXTENSION = ".txt"

TIMECODE_PATTERN = re.compile(r'(\d{2}):(\d{2}):(\d{2})\.(\d{3})')


def get_atci_dir() -> Path:
    """Get the data area from environment, defaulting to ~/.atci"""
    return Path(os.getenv("ATCI_HOME", str(Path.home() / ".atci")))


class AtciPaths:
    """Well-known files inside the data area"""

    def __init__(self, atci_dir: Optional[PathLike] = None):
        self.root = Path(atci_dir) if atci_dir is not None else get_atci_dir()

    @property
    def queue_file(self) -> Path:
        return self.root / ".queue"

    @property
    def queue_options_file(self) -> Path:
        return self.root / ".queue_options"

    @property
    def processing_file(self) -> Path:
        return self.root / ".currently_processing"

    @property
    def blocklist_file(self) -> Path:
        return self.root / ".blocklist"

    @property
    def commands_dir(self) -> Path:
        return self.root / ".commands"

    @property
    def cancel_file(self) -> Path:
        return self.commands_dir / "CANCEL"

    @property
    def database(self) -> Path:
        return self.root / "video_info.db"

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)


def video_extension(path: PathLike) -> str:
    """Lower-cased extension without the dot"""
    return Path(path).suffix.lstrip(".").lower()


def has_video_extension(path: PathLike) -> bool:
    return video_extension(path) in VIDEO_EXTENSIONS


def transcript_path_for(video_path: PathLike) -> Path:
    """The transcript shares the directory and stem of its video"""
    return Path(video_path).with_suffix(TRANSCRIPT_EXTENSION)


def iter_video_files(root: PathLike) -> Iterator[Path]:
    """Walk a watch root yielding recognized video files, skipping unreadable entries"""
    for dirpath, _dirnames, filenames in os.walk(root, onerror=lambda e: None):
        for filename in filenames:
            if has_video_extension(filename):
                yield Path(dirpath) / filename


def format_duration(seconds: float) -> str:
    """Round to whole seconds (halves up) and format as HH:MM:SS"""
    total_seconds = int(math.floor(seconds + 0.5))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_timecode_ms(total_ms: int) -> str:
    """Format milliseconds as HH:MM:SS.mmm"""
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1_000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def parse_timecode_ms(timecode: str) -> int:
    """Parse HH:MM:SS.mmm (or the SRT comma form) to milliseconds"""
    # Handle SRT format: 00:00:01,500 -> 00:00:01.500
    timecode = timecode.replace(',', '.')

    match = TIMECODE_PATTERN.match(timecode)
    if not match:
        raise ValueError(f"Invalid timecode: {timecode}")
    hours, minutes, seconds, milliseconds = map(int, match.groups())
    return (hours * 3600 + minutes * 60 + seconds) * 1000 + milliseconds


def srt_to_transcript_timestamp(timestamp: str) -> str:
    """00:00:01,500 -> 00:00:01.500"""
    return timestamp.replace(',', '.')


def transcript_to_srt_timestamp(timestamp: str) -> str:
    """00:00:01.500 -> 00:00:01,500"""
    return timestamp.replace('.', ',')


def format_datetime(timestamp: float) -> str:
    """Format a POSIX timestamp in local time the way the catalog stores it"""
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def remove_quietly(path: PathLike) -> bool:
    """Delete a file if present; returns True when something was removed"""
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
