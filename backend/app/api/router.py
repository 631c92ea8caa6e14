"""
Main API router that includes all endpoint routers
"""

import time

from fastapi import APIRouter, Depends

from app.api import worker_status
from app.api.worker_status import get_expiry_worker
from app.core.config import settings
from app.core.scheduler import ExpiryWorkerScheduler

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(worker_status.router)


@api_router.get("/health")
async def api_health(worker: ExpiryWorkerScheduler = Depends(get_expiry_worker)):
    """API health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION,
        "workers": {
            "expiry": worker.status(),
        }
    }
