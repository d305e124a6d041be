"""
Main worker service.

Wires the configuration record, the queue backend, the transcript
pipeline, the catalog and the directory watcher together and runs the
queue processing loop in the foreground until a shutdown signal arrives.
"""

import time
import signal
import sys
import logging
from pathlib import Path
from typing import Optional, Dict, Any

from .adapters import create_queue
from .adapters.base import QueueAdapter
from .cancellation import CancellationToken
from .catalog import Catalog, VideoPartsStore
from .config import AtciConfig, WorkerConfig, get_config_path, get_config_path_sha, load_config
from .http_server import start_health_server
from .logging_setup import setup_logging, log_exception
from .orchestrator import PipelineOrchestrator
from .pidfile import PidFileManager
from .pipeline.parts import PartReassembler
from .pipeline.probe import MediaProbe
from .pipeline.runner import ToolRunner
from .pipeline.transcribe import TranscriptProducer
from .pipeline.util import AtciPaths
from .processor import VideoProcessor
from .watcher import DirectoryWatcher

logger = logging.getLogger("atci")


class WorkerService:
    """Long-running transcript worker"""

    def __init__(self, config: Optional[WorkerConfig] = None,
                 atci_config: Optional[AtciConfig] = None,
                 config_path: Optional[Path] = None):
        self.config = config or WorkerConfig.from_env()
        self.atci_config = atci_config
        self.config_path = Path(config_path) if config_path is not None else get_config_path()
        self.paths: Optional[AtciPaths] = None
        self.pidfile: Optional[PidFileManager] = None
        self.queue: Optional[QueueAdapter] = None
        self.catalog: Optional[Catalog] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.watcher: Optional[DirectoryWatcher] = None
        self.health_server = None
        self.running = False

    def initialize(self):
        """Load configuration, claim the single-instance slot and build the pipeline"""
        try:
            setup_logging(self.config.LOG_LEVEL, self.config.ATCI_HOME)

            self.config.validate()
            if self.atci_config is None:
                self.atci_config = load_config(self.config_path)
            self.atci_config.validate_required()

            self.paths = AtciPaths(self.config.ATCI_HOME)
            self.paths.ensure()

            self.pidfile = PidFileManager(self.paths.root, get_config_path_sha(self.config_path))
            self.pidfile.acquire(takeover=self.config.TAKEOVER)

            self._initialize_pipeline()

            self.health_server = start_health_server(
                self.config, self.catalog, self.queue, self.orchestrator
            )

            logger.info("Worker service initialized successfully")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _initialize_pipeline(self):
        """Build the queue backend and every pipeline stage on top of it"""
        cfg = self.atci_config
        token = CancellationToken(self.paths.cancel_file)

        self.queue = create_queue(cfg.queue_backend, self.paths, token)
        self.catalog = Catalog(self.paths.database, cfg.watch_directories)
        parts_store = VideoPartsStore(self.paths.database)

        runner = ToolRunner(poll_interval=self.config.CANCEL_POLL_MS / 1000.0)
        probe = MediaProbe(cfg.ffprobe_path)
        producer = TranscriptProducer(cfg, self.paths.root, runner=runner, probe=probe)
        reassembler = PartReassembler(producer, parts_store, self.queue, probe=probe, runner=runner)
        processor = VideoProcessor(self.queue, producer, reassembler, probe, cancel_token=token)

        self.orchestrator = PipelineOrchestrator(cfg, self.queue, processor, self.catalog)
        self.watcher = DirectoryWatcher(
            self.queue,
            cfg.watch_directories,
            quiet_period_sec=self.config.WATCH_QUIET_PERIOD_SEC,
            interval_sec=self.config.WATCH_INTERVAL_MS / 1000.0,
        )

        logger.info(
            f"Initialized {cfg.queue_backend} queue, watching {len(cfg.watch_directories)} directories"
        )

    def start(self):
        """Start the watcher thread and run the processing loop"""
        if self.running:
            logger.warning("Worker service is already running")
            return

        self.running = True
        self.orchestrator.refresh_catalog()
        self.watcher.start()

        logger.info("Worker service started")
        self._start_polling_loop()

    def _start_polling_loop(self):
        """Drain the queue, sleeping for the idle interval whenever it is empty"""
        logger.info("Worker started, polling the queue...")
        idle_sec = self.config.IDLE_INTERVAL_MS / 1000.0

        while self.running:
            try:
                if not self.run_once():
                    time.sleep(idle_sec)

            except KeyboardInterrupt:
                logger.info("Received interrupt signal, shutting down...")
                break
            except Exception as e:
                log_exception(logger, f"Unexpected error in worker loop: {str(e)}")
                time.sleep(idle_sec)

        logger.info("Worker polling loop stopped")

    def run_once(self) -> bool:
        """
        Run one iteration of the worker loop.

        Returns:
            True if a queue entry was drawn, False if the queue was empty
        """
        return self.orchestrator.run_once()

    def stop(self):
        """Stop the worker service"""
        self.running = False

        if self.watcher:
            self.watcher.stop(timeout=5.0)
        if self.health_server:
            self.health_server.stop()
        if self.pidfile:
            self.pidfile.release()

        logger.info("Worker service stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'config': {
                'queue_backend': self.atci_config.queue_backend if self.atci_config else None,
                'watch_directories': list(self.atci_config.watch_directories) if self.atci_config else [],
                'idle_interval_ms': self.config.IDLE_INTERVAL_MS,
                'watch_interval_ms': self.config.WATCH_INTERVAL_MS,
            }
        }

        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()

        return stats

    def reset_stats(self):
        """Reset worker statistics"""
        if self.orchestrator:
            self.orchestrator.reset_stats()
        logger.info("Worker statistics reset")


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)


def main():
    """Main entry point"""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker = WorkerService()

    try:
        worker.initialize()
        worker.start()
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()
