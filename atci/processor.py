"""
Per-item transcript processing.

Takes one popped queue path through validation, the transcript producer
(or the multi-part reassembler) and the length stamp, owning the
currently-processing record for the duration.
"""

import time
import logging
from pathlib import Path
from typing import List, Optional

from .adapters.base import QueueAdapter
from .cancellation import CancellationToken
from .errors import AtciError, ProbeError, ValidationError
from .logging_setup import log_exception
from .models import Outcome, ProcessingResult
from .pipeline.metadata import set_meta
from .pipeline.parts import PartReassembler, parse_video_part
from .pipeline.probe import MediaProbe
from .pipeline.transcribe import TranscriptProducer
from .pipeline.util import has_video_extension, transcript_path_for

logger = logging.getLogger("atci")


class VideoProcessor:
    """Handles transcript production for a single queued video"""

    def __init__(self, queue: QueueAdapter, producer: TranscriptProducer,
                 reassembler: PartReassembler, probe: MediaProbe,
                 cancel_token: Optional[CancellationToken] = None):
        self.queue = queue
        self.producer = producer
        self.reassembler = reassembler
        self.probe = probe
        self.cancel_token = cancel_token or queue.cancel_token
        self.start_time = None

    def validate(self, video_path: str) -> Path:
        """
        Check that a queued path is an existing, recognized video file.

        Raises:
            ValidationError: if the path is missing, not a file, or has an
                unrecognized extension
        """
        path = Path(video_path)
        if not path.exists():
            raise ValidationError(f"Queued path does not exist: {video_path}")
        if not path.is_file():
            raise ValidationError(f"Queued path is not a file: {video_path}")
        if not has_video_extension(path):
            raise ValidationError(f"Queued path is not a recognized video: {video_path}")
        return path

    def process_video(self, video_path: str, model: Optional[str] = None,
                      subtitle_stream_index: Optional[int] = None) -> ProcessingResult:
        """
        Produce the transcript for one validated path.

        Args:
            video_path: Absolute path just claimed from the queue
            model: Per-entry speech-to-text model override
            subtitle_stream_index: Per-entry subtitle stream override

        Returns:
            ProcessingResult with success, cancellation and timing details
        """
        self.start_time = time.time()
        stages_completed: List[str] = []

        self.queue.mark_processing(video_path)
        logger.info(f"CLAIMED: {video_path}")

        try:
            if self.cancel_token.is_cancelled():
                return self._cancelled(video_path, stages_completed)

            part = parse_video_part(video_path)
            if part is not None:
                produced = self.reassembler.process(
                    part, self.cancel_token, model, subtitle_stream_index
                )
            else:
                produced = self.producer.produce(
                    video_path, self.cancel_token, model, subtitle_stream_index
                )

            if produced.cancelled:
                return self._cancelled(video_path, stages_completed)
            if produced.outcome == Outcome.BLOCKED:
                stages_completed.append("blocked")
                return ProcessingResult(
                    video_path=video_path,
                    success=True,
                    blocked=True,
                    stages_completed=stages_completed,
                    processing_time_sec=self._elapsed(),
                )
            stages_completed.append("transcript")

            if self.cancel_token.is_cancelled():
                # The transcript finished before the cancel could interrupt it
                logger.info(f"Cancel arrived after {video_path} completed, discarding it")
                self.cancel_token.consume()

            if part is None:
                self._stamp_length(video_path)
                stages_completed.append("length")

            processing_time = self._elapsed()
            if produced.error:
                logger.error(f"FAILED: {video_path}: {produced.error}")
                return ProcessingResult(
                    video_path=video_path,
                    success=False,
                    stages_completed=stages_completed,
                    error=produced.error,
                    processing_time_sec=processing_time,
                )

            logger.info(f"READY: {video_path} in {processing_time:.2f}s")
            return ProcessingResult(
                video_path=video_path,
                success=True,
                stages_completed=stages_completed,
                processing_time_sec=processing_time,
            )

        except (AtciError, OSError) as e:
            error_msg = f"Processing failed for {video_path}: {e}"
            log_exception(logger, f"FAILED: {error_msg}")
            return ProcessingResult(
                video_path=video_path,
                success=False,
                stages_completed=stages_completed,
                error=error_msg,
                processing_time_sec=self._elapsed(),
            )
        finally:
            self.queue.clear_processing()

    def _stamp_length(self, video_path: str) -> None:
        if not transcript_path_for(video_path).exists():
            logger.warning(f"No transcript to stamp for {video_path}")
            return
        try:
            length = self.probe.duration(video_path)
        except ProbeError as e:
            logger.warning(f"LENGTH: unavailable for {video_path}: {e}")
            return
        set_meta(video_path, "length", length)
        logger.info(f"LENGTH: {length} for {video_path}")

    def _cancelled(self, video_path: str, stages_completed: List[str]) -> ProcessingResult:
        self.queue.clear_processing()
        self.cancel_token.consume()
        logger.info(f"CANCELLED: {video_path}")
        return ProcessingResult(
            video_path=video_path,
            success=False,
            cancelled=True,
            stages_completed=stages_completed,
            processing_time_sec=self._elapsed(),
        )

    def _elapsed(self) -> float:
        return time.time() - self.start_time if self.start_time else 0.0
