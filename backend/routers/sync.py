"""
Sync Router
Manual sync submission, batch status polling and dead-letter handling.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from config.dependencies import get_coordinator, get_dispatcher, get_status_service, get_tenant_id
from config.settings import settings
from database.models import JobType
from job_queue.batch_coordinator import BatchCoordinator
from job_queue.dispatcher import SyncDispatcher
from job_queue.status import SyncStatusService
from utils.exceptions import SyncError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


class ProductSyncRequest(BaseModel):
    product_id: str = Field(..., min_length=1, description="Catalog item id")
    target: str = Field(default=settings.DEFAULT_SYNC_TARGET, description="Marketplace to sync to")
    job_type: JobType = JobType.PRODUCTS


class BatchSyncRequest(BaseModel):
    # Size limits are enforced by the dispatcher so the error code is consistent
    product_ids: List[str] = Field(..., description="Catalog item ids")
    target: str = Field(default=settings.DEFAULT_SYNC_TARGET, description="Marketplace to sync to")
    job_type: JobType = JobType.PRODUCTS


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(e)}"
    )


@router.post("/product", status_code=status.HTTP_202_ACCEPTED)
async def sync_product(request: ProductSyncRequest,
                       tenant_id: str = Depends(get_tenant_id),
                       dispatcher: SyncDispatcher = Depends(get_dispatcher)):
    """Start a single product sync."""
    try:
        job = await dispatcher.submit_single(
            tenant_id, request.product_id, request.target, job_type=request.job_type
        )
        return {
            "success": True,
            "data": {"sync_id": job.sync_id, "status": job.status.value, "target": job.target.value},
            "message": "Sync started",
        }
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("start sync", e)


@router.post("/batch", status_code=status.HTTP_202_ACCEPTED)
async def sync_batch(request: BatchSyncRequest,
                     tenant_id: str = Depends(get_tenant_id),
                     dispatcher: SyncDispatcher = Depends(get_dispatcher)):
    """Start a batch sync; the whole request is rejected if any product is invalid."""
    try:
        submission = await dispatcher.submit_batch(
            tenant_id, request.product_ids, request.target, job_type=request.job_type
        )
        return {
            "success": True,
            "data": {
                "batch_id": submission.batch.batch_id,
                "total": len(submission.jobs),
                "jobs": [
                    {"sync_id": job.sync_id, "product_id": job.item_id, "status": job.status.value}
                    for job in submission.jobs
                ],
            },
            "message": f"Started batch sync for {len(submission.jobs)} products",
        }
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("start batch sync", e)


@router.get("/batch/{batch_id}/status")
async def get_batch_status(batch_id: str,
                           tenant_id: str = Depends(get_tenant_id),
                           status_service: SyncStatusService = Depends(get_status_service)):
    return {"success": True, "data": await status_service.get_batch_status(batch_id, tenant_id)}


@router.post("/batch/{batch_id}/cancel")
async def cancel_batch(batch_id: str,
                       tenant_id: str = Depends(get_tenant_id),
                       coordinator: BatchCoordinator = Depends(get_coordinator)):
    batch = await coordinator.cancel_batch(batch_id, tenant_id)
    return {
        "success": True,
        "data": {"batch_id": batch.batch_id, "cancelled": batch.cancelled,
                 "cancelled_at": batch.cancelled_at},
        "message": "Batch cancellation requested",
    }


@router.get("/jobs/{sync_id}")
async def get_job_status(sync_id: str,
                         tenant_id: str = Depends(get_tenant_id),
                         status_service: SyncStatusService = Depends(get_status_service)):
    return {"success": True, "data": await status_service.get_job_status(sync_id, tenant_id)}


@router.get("/dead-letter")
async def list_dead_letters(tenant_id: str = Depends(get_tenant_id),
                            coordinator: BatchCoordinator = Depends(get_coordinator)):
    """Jobs that failed with a retryable error after exhausting their retries."""
    entries = coordinator.list_dead_letters(tenant_id)
    return {"success": True, "data": entries, "total": len(entries)}


@router.post("/dead-letter/{sync_id}/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_dead_letter(sync_id: str,
                            tenant_id: str = Depends(get_tenant_id),
                            dispatcher: SyncDispatcher = Depends(get_dispatcher)):
    try:
        job = await dispatcher.retry_dead_letter(sync_id, tenant_id)
        return {
            "success": True,
            "data": {"sync_id": job.sync_id, "retry_of": sync_id, "status": job.status.value},
            "message": "Sync resubmitted",
        }
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("retry sync", e)
