"""
Sync status queries
Read-only aggregate views over the persisted job and batch snapshots.
"""

import math
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional

from database.models import BatchSyncOperation, SyncJob, SyncJobStatus
from database.repositories import SyncRepository
from utils.exceptions import NotFoundError

AVERAGE_JOB_SECONDS = 2.5
MAX_ESTIMATE_CONCURRENCY = 5


def format_duration(duration: timedelta) -> str:
    """Format a duration as e.g. "1h 2m 3s"."""
    seconds = max(int(duration.total_seconds()), 0)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def estimate_completion_time(remaining: int, active: int) -> str:
    if remaining == 0:
        return "0 minutes"

    concurrency = min(MAX_ESTIMATE_CONCURRENCY, active + remaining)
    estimated = remaining * AVERAGE_JOB_SECONDS / concurrency
    if estimated < 60:
        return f"{math.ceil(estimated)} seconds"
    return f"{math.ceil(estimated / 60)} minutes"


def aggregate_jobs(jobs: List[SyncJob]) -> Dict[str, Any]:
    """
    Derive batch counts, status and percentage from job states.

    Status is "completed" when every job succeeded, "failed" when every job
    failed, "mixed" when all are terminal with both outcomes present, and
    "queued"/"processing" while any job is still open.
    """
    counts = Counter(job.status for job in jobs)
    total = len(jobs)
    completed = counts[SyncJobStatus.SUCCESS]
    failed = counts[SyncJobStatus.ERROR]
    in_progress = counts[SyncJobStatus.RUNNING]
    queued = counts[SyncJobStatus.QUEUED]
    done = completed + failed

    if done < total:
        status = "processing" if (in_progress or done) else "queued"
    elif failed == 0:
        status = "completed"
    elif completed == 0:
        status = "failed"
    else:
        status = "mixed"

    # round half up
    percentage = (200 * done + total) // (2 * total) if total else 0

    return {
        "total": total,
        "completed": completed,
        "failed": failed,
        "in_progress": in_progress,
        "queued": queued,
        "status": status,
        "percentage": percentage,
    }


def _error_key(job: SyncJob) -> str:
    if job.cancelled:
        return "CANCELLED"
    return job.error_kind or "UNKNOWN"


class SyncStatusService:
    """Status queries exposed to polling clients."""

    def __init__(self, repository: SyncRepository):
        self.repository = repository

    async def _load_batch(self, batch_id: str, tenant_id: Optional[str]) -> BatchSyncOperation:
        batch = await self.repository.get_batch(batch_id)
        if batch is None or (tenant_id is not None and batch.tenant_id != tenant_id):
            raise NotFoundError("batch", batch_id)
        return batch

    async def get_batch_status(self, batch_id: str, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        batch = await self._load_batch(batch_id, tenant_id)
        jobs = await self.repository.get_jobs(batch.job_ids)

        summary = aggregate_jobs(jobs)
        total = summary["total"]
        is_complete = summary["status"] in ("completed", "failed", "mixed")

        started = [job.started_at for job in jobs if job.started_at]
        finished = [job.completed_at for job in jobs if job.completed_at]
        started_at = min(started) if started else None
        completed_at = max(finished) if is_complete and finished else None

        failures = [job for job in jobs if job.status == SyncJobStatus.ERROR]
        error_summary = None
        if failures:
            error_summary = {
                "total_errors": len(failures),
                "error_types": dict(Counter(_error_key(job) for job in failures)),
            }

        return {
            "batch_id": batch.batch_id,
            "target": batch.target.value,
            "job_type": batch.job_type.value,
            "source": batch.source.value,
            "schedule_id": batch.schedule_id,
            **summary,
            "is_complete": is_complete,
            "cancelled": batch.cancelled,
            "success_rate": round(summary["completed"] / total, 4) if total else 0.0,
            "failure_rate": round(summary["failed"] / total, 4) if total else 0.0,
            "created_at": batch.created_at,
            "started_at": started_at,
            "completed_at": completed_at,
            "duration": format_duration(completed_at - started_at)
            if completed_at and started_at else None,
            "estimated_completion_time": None if is_complete else estimate_completion_time(
                summary["queued"] + summary["in_progress"], summary["in_progress"]
            ),
            "error_summary": error_summary,
            "jobs": [
                {
                    "sync_id": job.sync_id,
                    "item_id": job.item_id,
                    "status": job.status.value,
                    "error_kind": _error_key(job) if job.status == SyncJobStatus.ERROR else None,
                }
                for job in jobs
            ],
        }

    async def get_job_status(self, sync_id: str, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        job = await self.repository.get_job(sync_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            raise NotFoundError("job", sync_id)

        events = await self.repository.list_events(sync_id)
        error = None
        if job.status == SyncJobStatus.ERROR:
            error = {
                "message": job.error_message,
                "kind": job.error_kind,
                "retryable": job.retryable,
                "cancelled": job.cancelled,
            }

        return {
            "sync_id": job.sync_id,
            "item_id": job.item_id,
            "target": job.target.value,
            "job_type": job.job_type.value,
            "batch_id": job.batch_id,
            "status": job.status.value,
            "events": [event.model_dump(mode="json") for event in events],
            "started_at": job.started_at,
            "completed_at": job.completed_at,
            "error": error,
        }
