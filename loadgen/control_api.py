"""Control API for runtime inspection using FastAPI."""
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for the running load generator."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the load generator engine
        """
        self.engine = engine
        self.app = FastAPI(title="TSDB Load Generator Control API")
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get per-tenant client status."""
            try:
                status_info = self.engine.status()
                status_info["config"] = {
                    "remote_write_url": self.engine.config.remote_write.url,
                    "write_interval_s": self.engine.config.remote_write.interval_s,
                    "series_count": self.engine.config.series.count,
                    "query_enabled": self.engine.config.query.enabled,
                }
                return status_info
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
