"""Main FastAPI application for the whisper bridge.

This is the HTTP front of a single long-running whisper worker. The worker
is started with the application and restarted whenever it exits.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from whisper_bridge import config
from whisper_bridge.api.routers import recognition

# Configure logging
logging.basicConfig(
    level=config.get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events (startup and shutdown)."""
    logger = logging.getLogger(__name__)

    from whisper_bridge.worker import get_orchestrator

    orchestrator = get_orchestrator()
    try:
        # Startup
        logger.info("Starting up application...")
        await orchestrator.start()
        logger.info("Startup complete")

        yield  # Application runs here

    finally:
        # Shutdown
        logger.info("Shutting down application...")
        try:
            await orchestrator.stop()
            logger.info("Whisper worker stopped")
        except Exception as e:
            logger.warning(f"Error stopping whisper worker: {e}")
        logger.info("Shutdown complete")


# Create FastAPI app with lifespan handler
app = FastAPI(
    title="Whisper Bridge API",
    description="HTTP API in front of a long-running whisper speech recognition process",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.include_router(recognition.router)


@app.get("/api")
async def root():
    """Root API endpoint with service information."""
    return {
        "name": "Whisper Bridge API",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "recognize": "/recognize",
            "docs": "/api/docs",
            "health": "/api/health",
            "ready": "/api/ready",
        },
    }


@app.get("/api/health")
async def health():
    """Health check endpoint with worker and request status."""
    from whisper_bridge.worker import get_orchestrator

    return {
        "status": "healthy",
        **get_orchestrator().status(),
    }


@app.get("/api/ready")
async def ready():
    """Readiness check: ready only while the worker is running."""
    from whisper_bridge.worker import get_orchestrator

    orchestrator = get_orchestrator()
    if not orchestrator.supervisor.is_running():
        raise HTTPException(
            status_code=503,
            detail={
                "code": "PROCESS_UNAVAILABLE",
                "message": "Whisper service is not running.",
            },
        )
    return {"status": "ready", "busy": orchestrator.gate.busy}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.get_host(), port=config.get_port())
