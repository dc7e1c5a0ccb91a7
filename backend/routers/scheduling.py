"""
Scheduling Router
API endpoints for managing cron-triggered sync schedules.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from config.dependencies import get_registry, get_tenant_id
from config.settings import settings
from database.models import (
    ConflictResolution,
    JobType,
    ScheduleConfig,
    ScheduleCreate,
    ScheduleOptions,
    SchedulePriority,
    ScheduleUpdate,
    SyncTarget,
)
from scheduler.cron_expression import CronExpression
from scheduler.schedule_registry import ScheduleRegistry
from utils.exceptions import NotFoundError, SyncError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scheduling", tags=["scheduling"])


class ScheduleRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Schedule name")
    store_id: Optional[str] = Field(default=None, description="Store the schedule is limited to")
    job_type: JobType = Field(default=JobType.PRODUCTS, description="What to sync")
    cron_expression: str = Field(..., description="Five-field cron expression")
    enabled: bool = True
    target: SyncTarget = SyncTarget(settings.DEFAULT_SYNC_TARGET)
    options: ScheduleOptions = Field(default_factory=ScheduleOptions)
    metadata: Dict[str, Any] = Field(default_factory=dict)


async def _owned_schedule(registry: ScheduleRegistry, schedule_id: str, tenant_id: str) -> ScheduleConfig:
    schedule = await registry.get_schedule(schedule_id)
    if schedule is None or schedule.tenant_id != tenant_id:
        raise NotFoundError("schedule", schedule_id)
    return schedule


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(e)}"
    )


@router.get("/schedules")
async def get_schedules(tenant_id: str = Depends(get_tenant_id),
                        registry: ScheduleRegistry = Depends(get_registry)):
    """Get all schedules of the calling tenant."""
    try:
        schedules = await registry.list_schedules(tenant_id)
        return {"success": True, "data": schedules}
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("get schedules", e)


@router.post("/schedules", status_code=status.HTTP_201_CREATED)
async def create_schedule(request: ScheduleRequest,
                          tenant_id: str = Depends(get_tenant_id),
                          registry: ScheduleRegistry = Depends(get_registry)):
    """Create a new schedule."""
    try:
        schedule = await registry.add_schedule(
            ScheduleCreate(tenant_id=tenant_id, **request.model_dump())
        )
        return {"success": True, "data": schedule, "message": "Schedule created successfully"}
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("create schedule", e)


@router.get("/schedules/{schedule_id}")
async def get_schedule(schedule_id: str,
                       tenant_id: str = Depends(get_tenant_id),
                       registry: ScheduleRegistry = Depends(get_registry)):
    schedule = await _owned_schedule(registry, schedule_id, tenant_id)
    return {
        "success": True,
        "data": schedule,
        "description": CronExpression.describe(schedule.cron_expression),
    }


@router.put("/schedules/{schedule_id}")
async def update_schedule(schedule_id: str,
                          updates: ScheduleUpdate,
                          tenant_id: str = Depends(get_tenant_id),
                          registry: ScheduleRegistry = Depends(get_registry)):
    """Update an existing schedule."""
    await _owned_schedule(registry, schedule_id, tenant_id)
    try:
        schedule = await registry.update_schedule(schedule_id, updates)
        if schedule is None:
            raise NotFoundError("schedule", schedule_id)
        return {"success": True, "data": schedule, "message": "Schedule updated successfully"}
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("update schedule", e)


@router.delete("/schedules/{schedule_id}")
async def delete_schedule(schedule_id: str,
                          tenant_id: str = Depends(get_tenant_id),
                          registry: ScheduleRegistry = Depends(get_registry)):
    """Delete a schedule and cancel its timer."""
    await _owned_schedule(registry, schedule_id, tenant_id)
    removed = await registry.remove_schedule(schedule_id)
    if not removed:
        raise NotFoundError("schedule", schedule_id)
    return {"success": True, "message": "Schedule deleted successfully"}


@router.post("/schedules/{schedule_id}/enable")
async def enable_schedule(schedule_id: str,
                          tenant_id: str = Depends(get_tenant_id),
                          registry: ScheduleRegistry = Depends(get_registry)):
    await _owned_schedule(registry, schedule_id, tenant_id)
    schedule = await registry.enable_schedule(schedule_id)
    return {"success": True, "data": schedule, "message": "Schedule enabled"}


@router.post("/schedules/{schedule_id}/disable")
async def disable_schedule(schedule_id: str,
                           tenant_id: str = Depends(get_tenant_id),
                           registry: ScheduleRegistry = Depends(get_registry)):
    await _owned_schedule(registry, schedule_id, tenant_id)
    schedule = await registry.disable_schedule(schedule_id)
    return {"success": True, "data": schedule, "message": "Schedule disabled"}


@router.post("/schedules/{schedule_id}/trigger")
async def trigger_schedule(schedule_id: str,
                           tenant_id: str = Depends(get_tenant_id),
                           registry: ScheduleRegistry = Depends(get_registry)):
    """Run a schedule right now, regardless of its timer or enabled flag."""
    await _owned_schedule(registry, schedule_id, tenant_id)
    try:
        batch_ids = await registry.trigger_now(schedule_id)
        return {
            "success": True,
            "data": {"schedule_id": schedule_id, "batch_ids": batch_ids},
            "message": f"Triggered {len(batch_ids)} batch(es)",
        }
    except SyncError:
        raise
    except Exception as e:
        raise _internal_error("trigger schedule", e)


@router.get("/stats")
async def get_stats(tenant_id: str = Depends(get_tenant_id),
                    registry: ScheduleRegistry = Depends(get_registry)):
    return {"success": True, "data": await registry.get_stats(tenant_id)}


@router.get("/config")
async def get_scheduling_config():
    """Options available when building a schedule."""
    return {
        "success": True,
        "data": {
            "presets": CronExpression.get_presets(),
            "job_types": [job_type.value for job_type in JobType],
            "targets": [target.value for target in SyncTarget],
            "priorities": [priority.value for priority in SchedulePriority],
            "conflict_resolutions": [policy.value for policy in ConflictResolution],
            "timezone": settings.SCHEDULER_TIMEZONE,
            "max_batch_size": settings.SYNC_MAX_BATCH_SIZE,
        },
    }


@router.get("/validate-cron")
async def validate_cron(expression: str = Query(..., description="Cron expression to validate"),
                        registry: ScheduleRegistry = Depends(get_registry)):
    result = CronExpression.validate(expression)
    data = {"expression": expression, "valid": result.valid, "error": result.error}
    if result.valid:
        data["description"] = CronExpression.describe(expression)
        data["next_run_at"] = CronExpression.next_run(expression, registry.clock())
    return {"success": True, "data": data}
