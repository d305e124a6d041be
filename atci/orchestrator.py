"""
Queue draining and per-item bookkeeping.

Handles crash recovery of the currently-processing record, claiming the
queue head, running the processing hooks and refreshing the catalog.
Coordinates between VideoProcessor, the queue backend and the catalog.
"""

import time
import logging
from typing import Optional, Dict, Any
from datetime import datetime

from .adapters.base import QueueAdapter
from .catalog import Catalog
from .config import AtciConfig
from .errors import ValidationError
from .hooks import run_hook
from .logging_setup import log_exception
from .models import ProcessingResult
from .processor import VideoProcessor

logger = logging.getLogger("atci")


class PipelineOrchestrator:
    """Manages the queue processing loop body and its statistics"""

    def __init__(self, config: AtciConfig, queue: QueueAdapter, processor: VideoProcessor,
                 catalog: Optional[Catalog] = None):
        self.config = config
        self.queue = queue
        self.processor = processor
        self.catalog = catalog
        self.current_path: Optional[str] = None
        self.stats = self._fresh_stats()

    @staticmethod
    def _fresh_stats() -> Dict[str, Any]:
        return {
            'jobs_processed': 0,
            'jobs_failed': 0,
            'jobs_cancelled': 0,
            'total_processing_time': 0.0,
            'start_time': datetime.now()
        }

    def recover(self) -> None:
        """Drop a currently-processing record left behind by a crash"""
        record = self.queue.processing()
        if record is not None:
            logger.warning(f"Clearing stale currently processing record: {record[0]}")
            self.queue.clear_processing()

    def run_once(self) -> bool:
        """
        Run one iteration of the processing loop.

        Returns:
            True if a queue entry was drawn, False if the queue was empty
        """
        self.recover()

        entry = self.queue.claim_head()
        if entry is None:
            return False

        try:
            self.processor.validate(entry.path)
        except ValidationError as e:
            logger.warning(f"Skipping queue entry: {e}")
            self.queue.clear_processing()
            return True

        self.execute(entry.path, entry.model, entry.subtitle_stream_index)
        return True

    def execute(self, video_path: str, model: Optional[str] = None,
                subtitle_stream_index: Optional[int] = None) -> ProcessingResult:
        """
        Process one validated path and run the follow-up steps.

        Args:
            video_path: Path already claimed from the queue
            model: Speech-to-text model override for this entry
            subtitle_stream_index: Subtitle stream override for this entry

        Returns:
            ProcessingResult with execution details
        """
        start_time = time.time()
        self.current_path = video_path
        try:
            result = self.processor.process_video(video_path, model, subtitle_stream_index)
        except Exception as e:
            error_msg = f"Unexpected error processing {video_path}: {str(e)}"
            log_exception(logger, error_msg)
            result = ProcessingResult(
                video_path=video_path,
                success=False,
                error=error_msg,
                processing_time_sec=time.time() - start_time,
            )
        finally:
            self.current_path = None

        processing_time = time.time() - start_time
        self.stats['total_processing_time'] += processing_time

        if result.cancelled:
            self.stats['jobs_cancelled'] += 1
        elif result.blocked:
            logger.info(f"Deferred {video_path} until earlier parts are processed")
        elif result.success:
            self.stats['jobs_processed'] += 1
            run_hook(self.config.processing_success_command, video_path, "Success")
        else:
            self.stats['jobs_failed'] += 1
            self._handle_failure(video_path, result.error)

        if not result.cancelled:
            self.refresh_catalog()

        return result

    def _handle_failure(self, video_path: str, error: Optional[str]) -> None:
        logger.error(f"FAILED: {video_path}: {error}")
        run_hook(self.config.processing_failure_command, video_path, "Failure")

    def refresh_catalog(self) -> None:
        """Rebuild the catalog from disk; failures are logged, never raised"""
        if self.catalog is None:
            return
        try:
            self.catalog.rebuild()
        except Exception as e:
            log_exception(logger, f"Catalog rebuild failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        uptime = (datetime.now() - self.stats['start_time']).total_seconds()
        finished = self.stats['jobs_processed'] + self.stats['jobs_failed']
        avg_processing_time = (
            self.stats['total_processing_time'] / finished if finished > 0 else 0
        )

        return {
            'jobs_processed': self.stats['jobs_processed'],
            'jobs_failed': self.stats['jobs_failed'],
            'jobs_cancelled': self.stats['jobs_cancelled'],
            'total_processing_time': self.stats['total_processing_time'],
            'average_processing_time': avg_processing_time,
            'uptime_seconds': uptime,
            'current_status': f"processing {self.current_path}" if self.current_path else "idle",
            'success_rate': (
                self.stats['jobs_processed'] / finished if finished > 0 else 0
            )
        }

    def reset_stats(self) -> None:
        """Reset orchestrator statistics"""
        self.stats = self._fresh_stats()
        logger.info("Orchestrator statistics reset")
