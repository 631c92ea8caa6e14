"""
FastAPI application entry point

Hosts the health/status API and runs the expiry worker for the lifetime
of the process. Run with: uvicorn app.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.router import api_router
from app.core.config import settings
from app.core.database import engine
from app.core.logging import configure_logging
from app.core.scheduler import expiry_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)

    enable_expiry_worker = settings.ENABLE_EXPIRY_WORKER
    if enable_expiry_worker:
        logger.info(f"Starting expiry worker (poll interval: {settings.EXPIRY_WORKER_POLL_INTERVAL}ms)")
        await expiry_worker.start()

    yield

    logger.info("Shutting down gracefully...")
    if enable_expiry_worker:
        await expiry_worker.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.include_router(api_router)
