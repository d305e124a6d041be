"""
Full-text search over transcripts.

Each watch root is walked in parallel; every recognized video with a
sibling transcript is scanned line by line with a lower-cased,
apostrophe-normalized substring compare.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .catalog import describe_video
from .models import SearchMatch, SearchResult
from .pipeline.util import PathLike, iter_video_files, transcript_path_for

logger = logging.getLogger("atci")

# Typographic variants folded to U+0027
APOSTROPHE_TABLE = str.maketrans({
    "\u2019": "'",
    "\u2018": "'",
    "\u00b4": "'",
    "`": "'",
})


def normalize_apostrophes(text: str) -> str:
    return text.translate(APOSTROPHE_TABLE)


def normalize_for_match(text: str) -> str:
    return normalize_apostrophes(text.lower())


def looks_like_timestamp(line: str) -> bool:
    return ":" in line and any(c.isdigit() for c in line)


def matches_filter(path: str, filters: Optional[Sequence[str]]) -> bool:
    """True if no filter is given or any filter is a case-insensitive substring of `path`"""
    terms = [f.strip().lower() for f in (filters or []) if f and f.strip()]
    if not terms:
        return True
    lowered = path.lower()
    return any(term in lowered for term in terms)


def search_file(video_path: Path, watch_root: Path, query: str) -> Optional[SearchResult]:
    """Matches for one video, or None when its transcript has none"""
    transcript_path = transcript_path_for(video_path)
    try:
        with open(transcript_path, "r", encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
        video_info = describe_video(video_path, watch_root)
    except OSError as e:
        logger.debug(f"Skipping {video_path} during search: {e}")
        return None

    needle = normalize_for_match(query)
    matches: List[SearchMatch] = []
    for i, line in enumerate(lines):
        if needle not in normalize_for_match(line):
            continue
        timestamp = None
        if i > 0 and looks_like_timestamp(lines[i - 1]):
            timestamp = lines[i - 1]
        matches.append(SearchMatch(
            line_number=i + 1,
            line_text=line,
            timestamp=timestamp,
            video_info=video_info,
        ))

    if not matches:
        return None
    return SearchResult(file_path=str(video_path), matches=matches)


class TranscriptSearch:
    """Parallel transcript scan across the watch roots"""

    def __init__(self, watch_directories: Iterable[PathLike], max_workers: Optional[int] = None):
        self.watch_directories = [Path(d) for d in watch_directories]
        self.max_workers = max_workers or min(32, (os.cpu_count() or 1) + 4)

    def _candidates(self, watch_root: Path, filters: Optional[Sequence[str]]):
        for video_path in iter_video_files(watch_root):
            if not matches_filter(str(video_path), filters):
                continue
            if transcript_path_for(video_path).exists():
                yield video_path, watch_root

    def search(self, query: str, filters: Optional[Sequence[str]] = None) -> List[SearchResult]:
        """
        Search every transcript for `query`.

        Args:
            query: Substring to look for; case and apostrophe style are ignored
            filters: Optional substrings, any of which must occur in the video path

        Returns:
            Results ordered by video path, one per video with at least one match
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            candidates = [
                candidate
                for found in executor.map(lambda root: list(self._candidates(root, filters)),
                                          self.watch_directories)
                for candidate in found
            ]
            found_results = executor.map(
                lambda candidate: search_file(candidate[0], candidate[1], query), candidates
            )
            by_path = {result.file_path: result for result in found_results if result is not None}

        results = sorted(by_path.values(), key=lambda r: r.file_path)
        logger.debug(f"Search for {query!r}: {len(results)} videos matched")
        return results
