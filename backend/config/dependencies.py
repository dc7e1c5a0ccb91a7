"""
FastAPI dependencies
"""

from fastapi import Header, HTTPException, Request, status

from job_queue.batch_coordinator import BatchCoordinator
from job_queue.dispatcher import SyncDispatcher
from job_queue.status import SyncStatusService
from scheduler.schedule_registry import ScheduleRegistry

from .services import SyncServices


def get_services(request: Request) -> SyncServices:
    return request.app.state.services


def get_registry(request: Request) -> ScheduleRegistry:
    return get_services(request).registry


def get_dispatcher(request: Request) -> SyncDispatcher:
    return get_services(request).dispatcher


def get_coordinator(request: Request) -> BatchCoordinator:
    return get_services(request).coordinator


def get_status_service(request: Request) -> SyncStatusService:
    return get_services(request).status


async def get_tenant_id(x_tenant_id: str = Header(default="")) -> str:
    """Tenant of the caller; authentication happens upstream."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Tenant-ID header",
        )
    return tenant_id
