"""FastAPI application for the 3DS headless worker."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ..core.config import get_settings
from ..core.heuristics import get_heuristics
from ..core.logging import setup_logging, get_logger
from ..core.models import utc_timestamp
from .worker import router as worker_router

SERVICE_NAME = "3DS Headless Worker"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    setup_logging()
    logger = get_logger(__name__)
    settings = get_settings()
    heuristics = get_heuristics()

    logger.info(
        "3DS headless worker starting",
        port=settings.port,
        headless=settings.headless,
        finalize_enabled=settings.finalize_enabled,
        heuristics_file=settings.heuristics_file,
        otp_selectors=len(heuristics.otp_selectors),
        submit_selectors=len(heuristics.submit_selectors),
    )

    yield

    # Shutdown
    logger.info("3DS headless worker shutting down")


app = FastAPI(
    title=SERVICE_NAME,
    description="Completes 3-D Secure OTP challenges in a headless browser and reports the result",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(worker_router)


@app.get("/")
async def root():
    """Service banner."""
    settings = get_settings()
    return JSONResponse({
        "service": SERVICE_NAME,
        "status": "running",
        "finalize_enabled": settings.finalize_enabled,
        "version": VERSION,
    })


@app.get("/health")
async def health():
    """Liveness check."""
    return JSONResponse({"status": "online", "timestamp": utc_timestamp()})


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.app.main:app",
        host=settings.host,
        port=settings.port,
    )
