"""
Transcript operations used by external surfaces.

Every mutation refuses to touch the path the processor currently owns and
schedules a catalog rebuild afterwards, since the catalog is only a view
of disk state.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from .adapters.base import QueueAdapter
from .catalog import Catalog
from .errors import AtciError, ValidationError
from .pipeline.util import PathLike, has_video_extension, remove_quietly, transcript_path_for

logger = logging.getLogger("atci")


class TranscriptService:
    """Read, replace, rename and regenerate transcripts outside the processing loop"""

    def __init__(self, queue: QueueAdapter, catalog: Optional[Catalog] = None,
                 watch_directories: Optional[Iterable[PathLike]] = None):
        self.queue = queue
        self.catalog = catalog
        if watch_directories is None:
            watch_directories = catalog.watch_directories if catalog is not None else []
        self.watch_directories = [Path(d) for d in watch_directories]

    def _refresh_catalog(self) -> None:
        if self.catalog is not None:
            self.catalog.rebuild()

    def _ensure_not_processing(self, video_path: PathLike) -> None:
        if self.queue.is_processing(str(video_path)):
            raise AtciError(f"Video is currently being processed: {video_path}")

    def get_transcript(self, video_path: PathLike) -> str:
        """Raw transcript text for a video"""
        transcript_path = transcript_path_for(video_path)
        if not transcript_path.exists():
            raise ValidationError(f"Transcript file does not exist: {transcript_path}")
        with open(transcript_path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def _ensure_within_watch_directories(self, video_path: Path) -> None:
        resolved = video_path.resolve()
        for watch_dir in self.watch_directories:
            try:
                resolved.relative_to(watch_dir.resolve())
            except ValueError:
                continue
            return
        raise ValidationError(f"Video path {video_path} is not within any watch directory")

    def set(self, video_path: PathLike, content: str) -> Path:
        """
        Replace a video's transcript with `content`, verbatim.

        Raises:
            ValidationError: if the video is missing or outside every watch directory
            AtciError: if the video is currently being processed
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise ValidationError(f"Video file does not exist: {video_path}")
        self._ensure_within_watch_directories(video_path)
        self._ensure_not_processing(video_path)

        transcript_path = transcript_path_for(video_path)
        with open(transcript_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.info(f"Replaced transcript for {video_path}")

        self._refresh_catalog()
        return transcript_path

    def set_line(self, video_path: PathLike, line_number: int, content: str) -> Path:
        """
        Replace one line of a transcript, counting from 1 at the top of the file.

        The file's line ending style and trailing newline are kept.
        """
        if line_number < 1:
            raise ValidationError("Line number must be greater than 0")

        transcript_path = transcript_path_for(video_path)
        if not transcript_path.exists():
            raise ValidationError(f"Transcript file does not exist: {transcript_path}")
        with open(transcript_path, "r", encoding="utf-8", newline="") as f:
            text = f.read()

        line_ending = "\r\n" if "\r\n" in text else "\n"
        lines = text.split(line_ending)
        trailing_newline = lines[-1] == ""
        if trailing_newline:
            lines.pop()
        if line_number > len(lines):
            raise ValidationError(
                f"Line number {line_number} is beyond the end of the file "
                f"(file has {len(lines)} lines)"
            )
        self._ensure_not_processing(video_path)

        lines[line_number - 1] = content
        updated = line_ending.join(lines)
        if trailing_newline:
            updated += line_ending
        with open(transcript_path, "w", encoding="utf-8", newline="") as f:
            f.write(updated)
        logger.info(f"Replaced line {line_number} of {transcript_path}")

        self._refresh_catalog()
        return transcript_path

    def rename(self, video_path: PathLike, new_path: PathLike) -> Path:
        """
        Rename a video and its transcript as one pair.

        Raises:
            ValidationError: if the source pair is incomplete, the extension
                changes, or a target already exists
            AtciError: if the video is currently being processed
        """
        video_path = Path(video_path)
        new_path = Path(new_path)

        if not video_path.exists():
            raise ValidationError(f"Video file does not exist: {video_path}")
        if not has_video_extension(video_path):
            raise ValidationError(f"File is not a supported video format: {video_path}")

        transcript_path = transcript_path_for(video_path)
        if not transcript_path.exists():
            raise ValidationError(f"Transcript file does not exist: {transcript_path}")
        if video_path.suffix != new_path.suffix:
            raise ValidationError("New path must have the same file extension as the original")
        if new_path.exists():
            raise ValidationError(f"Target video file already exists: {new_path}")
        new_transcript_path = transcript_path_for(new_path)
        if new_transcript_path.exists():
            raise ValidationError(f"Target transcript file already exists: {new_transcript_path}")

        self._ensure_not_processing(video_path)

        os.rename(video_path, new_path)
        try:
            os.rename(transcript_path, new_transcript_path)
        except OSError:
            # Put the video back so the pair stays together
            os.rename(new_path, video_path)
            raise
        logger.info(f"Renamed {video_path} -> {new_path}")

        self._refresh_catalog()
        return new_path

    def regenerate(self, video_path: PathLike, model: Optional[str] = None,
                   subtitle_stream_index: Optional[int] = None) -> bool:
        """
        Delete the transcript and queue the video again.

        Args:
            video_path: Video whose transcript is rebuilt
            model: Speech-to-text model to use for this run only
            subtitle_stream_index: Subtitle stream to extract for this run only

        Returns:
            True if the video was added to the queue
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise ValidationError(f"Video file does not exist: {video_path}")
        self._ensure_not_processing(video_path)

        if remove_quietly(transcript_path_for(video_path)):
            logger.info(f"Removed transcript for regeneration: {video_path}")
        queued = self.queue.append(str(video_path), model, subtitle_stream_index)

        self._refresh_catalog()
        return queued
