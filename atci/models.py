"""
Domain models for the transcript worker.

Defines the core data structures passed between the queue, the
transcript pipeline, the catalog and the search index.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List


class Outcome(str, Enum):
    """Terminal state of a transcript production attempt"""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    # A later part of a multi-part video waiting on earlier parts
    BLOCKED = "blocked"


@dataclass
class ToolResult:
    """Captured output of an external tool run"""
    exit_status: int
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass
class ProduceResult:
    """
    Result of producing a transcript.

    `error` carries a failure that was absorbed into an empty transcript so
    the processor can still run the failure hook.
    """
    outcome: Outcome
    source: Optional[str] = None
    error: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.outcome == Outcome.CANCELLED


@dataclass
class ProcessingResult:
    """Represents the result of processing one queue entry"""
    video_path: str
    success: bool
    cancelled: bool = False
    blocked: bool = False
    stages_completed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    processing_time_sec: Optional[float] = None


@dataclass
class QueueEntry:
    """A queued path with optional per-item overrides"""
    path: str
    model: Optional[str] = None
    subtitle_stream_index: Optional[int] = None


@dataclass
class QueueStatus:
    """Currently processing path and how long it has been running"""
    path: Optional[str]
    age_seconds: int = 0
    queue: List[str] = field(default_factory=list)


@dataclass
class SubtitleStream:
    """A subtitle stream reported by the probe"""
    index: int
    codec_name: Optional[str] = None
    language: Optional[str] = None


@dataclass
class VideoInfo:
    """One catalog row: a discovered video and its derived attributes"""
    name: str
    base_name: str
    created_at: str
    line_count: int
    full_path: str
    transcript: bool
    last_generated: Optional[str] = None
    length: Optional[str] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CatalogPage:
    """A page of catalog rows with paging totals"""
    items: List[VideoInfo]
    page: int
    limit: int
    total_pages: int
    total_records: int


@dataclass
class SearchMatch:
    """A single matching transcript line"""
    line_number: int
    line_text: str
    timestamp: Optional[str]
    video_info: VideoInfo


@dataclass
class SearchResult:
    """All matches for one video"""
    file_path: str
    matches: List[SearchMatch]


@dataclass
class VideoPart:
    """A video whose filename matches <base>.part<N>.<ext>"""
    base_name: str
    part_number: int
    video_path: str
    extension: str

