"""
Sync Job Dispatcher
Validates submissions, persists jobs and batches, then hands them to the
batch coordinator. Every check runs before anything is written.
"""

import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from config.settings import settings
from database.models import (
    BatchSource,
    BatchSyncOperation,
    CatalogItem,
    JobType,
    ScheduleConfig,
    SyncEventType,
    SyncJob,
    SyncJobStatus,
    SyncTarget,
)
from database.repositories import CatalogStore, SyncRepository
from utils.clock import Clock, utc_now
from utils.exceptions import NotFoundError, OwnershipError, SyncValidationError
from utils.logging import get_logger

from .batch_coordinator import BatchCoordinator
from .event_log import SyncEventLog

logger = get_logger(__name__)


class BatchSubmission(BaseModel):
    batch: BatchSyncOperation
    jobs: List[SyncJob]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class SyncDispatcher:
    """Entry point for manual, scheduled and retried sync submissions."""

    def __init__(self,
                 repository: SyncRepository,
                 catalog: CatalogStore,
                 coordinator: BatchCoordinator,
                 event_log: SyncEventLog,
                 clock: Clock = utc_now,
                 max_batch_size: int = settings.SYNC_MAX_BATCH_SIZE):
        self.repository = repository
        self.catalog = catalog
        self.coordinator = coordinator
        self.event_log = event_log
        self.clock = clock
        self.max_batch_size = max_batch_size

    @staticmethod
    def _resolve_target(target: Union[str, SyncTarget]) -> SyncTarget:
        try:
            return SyncTarget(target)
        except ValueError:
            raise SyncValidationError(
                f"Unsupported sync target: {target}",
                code="UNSUPPORTED_TARGET",
                details={"supported": [t.value for t in SyncTarget]},
            )

    async def _lookup(self, tenant_id: str, item_ids: List[str]) -> List[CatalogItem]:
        try:
            return await self.catalog.lookup_owned(tenant_id, item_ids)
        except OwnershipError as e:
            raise SyncValidationError(e.message, code="ITEMS_NOT_FOUND", details=e.details)

    async def _mark_syncing(self, item_id: str, target: SyncTarget):
        try:
            await self.catalog.update_sync_status(item_id, target.value, "syncing")
        except Exception as e:
            logger.error("Failed to mark item as syncing", item_id=item_id,
                         target=target.value, error=str(e))

    async def submit_single(self,
                            tenant_id: str,
                            item_id: str,
                            target: Union[str, SyncTarget],
                            job_type: JobType = JobType.PRODUCTS,
                            max_retries: Optional[int] = None,
                            retry_of: Optional[str] = None) -> SyncJob:
        """
        Create one running job and start it in the background.

        Raises:
            SyncValidationError: Unsupported target or item not owned by the tenant
        """
        sync_target = self._resolve_target(target)
        await self._lookup(tenant_id, [item_id])

        now = self.clock()
        job = SyncJob(
            sync_id=_new_id("sync"),
            item_id=item_id,
            tenant_id=tenant_id,
            target=sync_target,
            job_type=job_type,
            status=SyncJobStatus.RUNNING,
            max_retries=settings.SYNC_MAX_RETRIES if max_retries is None else max_retries,
            options={"retry_of": retry_of} if retry_of else {},
            created_at=now,
            started_at=now,
        )
        await self.repository.insert_job(job)

        details = {"target": sync_target.value}
        if retry_of:
            details["retry_of"] = retry_of
        await self.event_log.append(job.sync_id, SyncEventType.INFO, "Starting sync process...", details)
        await self._mark_syncing(item_id, sync_target)

        logger.info("Sync job submitted", sync_id=job.sync_id, item_id=item_id,
                    target=sync_target.value, tenant_id=tenant_id)
        self.coordinator.launch_job(job.sync_id)
        return job

    async def submit_batch(self,
                           tenant_id: str,
                           item_ids: List[str],
                           target: Union[str, SyncTarget],
                           job_type: JobType = JobType.PRODUCTS,
                           source: BatchSource = BatchSource.MANUAL,
                           schedule_id: Optional[str] = None,
                           max_retries: Optional[int] = None,
                           options: Optional[Dict[str, Any]] = None) -> BatchSubmission:
        """
        Create a batch of queued jobs, one per item, and start it.

        The whole batch is rejected, with nothing persisted, if the target is
        unsupported, the size is outside 1..max_batch_size, an id repeats, or
        any item is missing or owned by another tenant.
        """
        sync_target = self._resolve_target(target)

        if not item_ids:
            raise SyncValidationError("At least one product is required", code="BATCH_EMPTY")
        if len(item_ids) > self.max_batch_size:
            raise SyncValidationError(
                f"Batch size {len(item_ids)} exceeds the maximum of {self.max_batch_size}",
                code="BATCH_TOO_LARGE",
                details={"max_batch_size": self.max_batch_size, "requested": len(item_ids)},
            )

        duplicates = sorted({item_id for item_id in item_ids if item_ids.count(item_id) > 1})
        if duplicates:
            raise SyncValidationError(
                "Duplicate product ids in batch",
                code="DUPLICATE_ITEMS",
                details={"duplicates": duplicates},
            )

        items = await self._lookup(tenant_id, item_ids)

        now = self.clock()
        batch_id = _new_id("batch")
        jobs = [
            SyncJob(
                sync_id=_new_id("sync"),
                item_id=item.id,
                tenant_id=tenant_id,
                target=sync_target,
                job_type=job_type,
                batch_id=batch_id,
                max_retries=settings.SYNC_MAX_RETRIES if max_retries is None else max_retries,
                options=dict(options or {}),
                created_at=now,
            )
            for item in items
        ]
        batch = BatchSyncOperation(
            batch_id=batch_id,
            tenant_id=tenant_id,
            target=sync_target,
            job_type=job_type,
            job_ids=[job.sync_id for job in jobs],
            source=source,
            schedule_id=schedule_id,
            created_at=now,
        )
        await self.repository.insert_batch(batch, jobs)

        for job, item in zip(jobs, items):
            await self.event_log.append(
                job.sync_id,
                SyncEventType.INFO,
                f"Starting batch sync for product: {item.title or item.id}",
                {"batch_id": batch_id, "target": sync_target.value},
            )
            await self._mark_syncing(item.id, sync_target)

        logger.info("Batch sync submitted", batch_id=batch_id, jobs=len(jobs),
                    target=sync_target.value, tenant_id=tenant_id, source=source.value)
        self.coordinator.launch(batch_id)
        return BatchSubmission(batch=batch, jobs=jobs)

    async def submit_scheduled(self, schedule: ScheduleConfig) -> List[str]:
        """Split the schedule's sync candidates into batches. Returns batch ids."""
        candidates = await self.catalog.list_sync_candidates(
            schedule.tenant_id, schedule.store_id, schedule.job_type
        )
        candidates = list(dict.fromkeys(candidates))
        if not candidates:
            logger.info("No sync candidates for schedule", schedule_id=schedule.id)
            return []

        size = min(schedule.options.batch_size, self.max_batch_size)
        batch_ids = []
        for start in range(0, len(candidates), size):
            submission = await self.submit_batch(
                schedule.tenant_id,
                candidates[start:start + size],
                schedule.target,
                job_type=schedule.job_type,
                source=BatchSource.SCHEDULE,
                schedule_id=schedule.id,
                max_retries=schedule.options.max_retries,
                options={
                    "priority": schedule.options.priority.value,
                    "conflict_resolution": schedule.options.conflict_resolution.value,
                },
            )
            batch_ids.append(submission.batch.batch_id)
        return batch_ids

    async def retry_dead_letter(self, sync_id: str, tenant_id: Optional[str] = None) -> SyncJob:
        """Resubmit a dead-lettered job's item as a new single job."""
        entry = self.coordinator.get_dead_letter(sync_id)
        if entry is None or (tenant_id is not None and entry["tenant_id"] != tenant_id):
            raise NotFoundError("dead_letter", sync_id)

        job = await self.submit_single(
            entry["tenant_id"],
            entry["item_id"],
            entry["target"],
            job_type=JobType(entry["job_type"]),
            retry_of=sync_id,
        )
        self.coordinator.pop_dead_letter(sync_id)
        return job
