"""
Expiry Worker Status API Endpoints

Exposes the expiry worker status and lets operators run a cycle on demand.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status

from app.core.scheduler import ExpiryWorkerScheduler, expiry_worker
from app.schemas.common import DataResponse, ErrorResponse

router = APIRouter(prefix="/workers", tags=["workers"])


def get_expiry_worker() -> ExpiryWorkerScheduler:
    """Dependency to get the expiry worker instance"""
    return expiry_worker


@router.get(
    "/expiry/status",
    response_model=DataResponse,
    responses={
        200: {"description": "Expiry worker status retrieved successfully"},
    }
)
async def get_expiry_worker_status(
    worker: ExpiryWorkerScheduler = Depends(get_expiry_worker)
):
    """
    Get status of the expiry worker

    Returns whether the timer is armed, its poll interval and batch size,
    whether the FREE payment instruction and payment client are available,
    and the summary of the last cycle.
    """
    return DataResponse(data=worker.status())


@router.post(
    "/expiry/trigger",
    response_model=DataResponse,
    responses={
        200: {"description": "Cycle completed"},
        409: {"description": "A cycle is already in progress", "model": ErrorResponse},
    }
)
async def trigger_expiry_cycle(
    worker: ExpiryWorkerScheduler = Depends(get_expiry_worker)
):
    """
    Run one expiry reconciliation cycle now and return its summary

    Cycle failures are reported in the summary's status field, not as
    HTTP errors.
    """
    result = await worker.trigger()
    if result is None:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail="Expiry worker cycle already in progress"
        )

    return DataResponse(
        success=result.status == 'success',
        message=f"Cycle finished with status '{result.status}'",
        data=result.to_dict()
    )
