import logging
from threading import Thread
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException

from .adapters.base import QueueAdapter
from .catalog import Catalog
from .config import WorkerConfig
from .logging_setup import log_exception

logger = logging.getLogger("atci")


class HealthServer:
    def __init__(self, catalog: Catalog, queue: QueueAdapter, orchestrator=None, port: int = 4620):
        self.catalog = catalog
        self.queue = queue
        self.orchestrator = orchestrator
        self.port = port
        self.app = FastAPI(title="atci worker health API")
        self.setup_routes()
        self.server_thread: Optional[Thread] = None
        self._server: Optional[uvicorn.Server] = None

    def setup_routes(self):
        """Setup API routes"""

        @self.app.get("/healthz")
        async def health_check():
            """Health check endpoint"""
            if not self.catalog.ping():
                raise HTTPException(status_code=503, detail="Catalog database unreachable")
            return {"ok": True, "status": "healthy"}

        @self.app.get("/queue/status")
        async def queue_status():
            """Currently processing path, its age and the pending queue (dev only)"""
            try:
                status = self.queue.status()
            except OSError as e:
                logger.error(f"Error reading queue status: {str(e)}")
                raise HTTPException(status_code=500, detail=f"Error reading queue: {str(e)}")
            return {
                "currently_processing": status.path,
                "age_seconds": status.age_seconds,
                "queue_length": len(status.queue),
                "queue": status.queue,
            }

        @self.app.get("/stats")
        async def get_stats():
            """Get worker statistics"""
            if self.orchestrator is None:
                return {"orchestrator": None}
            return {"orchestrator": self.orchestrator.get_stats()}

    def start(self):
        """Serve on 127.0.0.1 from a daemon thread"""
        if self._server is not None:
            return
        self._server = uvicorn.Server(uvicorn.Config(
            self.app,
            host="127.0.0.1",
            port=self.port,
            log_level="warning",
            access_log=False,
        ))
        self.server_thread = Thread(target=self._serve, name="atci-health", daemon=True)
        self.server_thread.start()
        logger.info(f"Health server listening on 127.0.0.1:{self.port}")

    def _serve(self):
        try:
            self._server.run()
        except Exception:
            log_exception(logger, "Health server crashed")

    def stop(self, timeout: float = 5.0):
        if self._server is None:
            return
        self._server.should_exit = True
        if self.server_thread is not None:
            self.server_thread.join(timeout=timeout)
        self._server = None
        self.server_thread = None
        logger.info("Health server stopped")


def start_health_server(config: WorkerConfig, catalog: Catalog, queue: QueueAdapter,
                        orchestrator=None) -> Optional[HealthServer]:
    """Start the health server if enabled"""
    if not config.ENABLE_HTTP_SERVER:
        return None
    server = HealthServer(catalog, queue, orchestrator, config.HTTP_PORT)
    server.start()
    return server
