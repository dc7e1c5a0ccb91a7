"""
Batch Coordinator
Executes sync jobs through their stage pipelines, retries retryable stage
failures, and writes exactly one terminal state and event per job.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from config.settings import settings
from connectors.marketplace import MarketplaceClient
from database.models import BatchSyncOperation, SyncEventType, SyncJob, SyncJobStatus
from database.repositories import CatalogStore, SyncRepository
from utils.clock import Clock, utc_now
from utils.exceptions import ExecutionError, NotFoundError
from utils.logging import SyncLogger, get_logger, performance_logger

from .error_classifier import ErrorKind, classify_error, format_retry_time
from .event_log import SyncEventLog
from .retry_policy import RetryPolicy, get_retry_policy
from .stages import TARGET_NAMES, Stage, StageContext, get_pipeline

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Sync cancelled"

_SUCCESS_MESSAGES = {
    "products": "Product successfully synced to {target}",
    "inventory": "Inventory successfully updated on {target}",
    "orders": "Orders successfully imported from {target}",
}


class BatchCoordinator:
    """Runs batches and single jobs as tracked asyncio tasks."""

    def __init__(self,
                 repository: SyncRepository,
                 catalog: CatalogStore,
                 marketplace: MarketplaceClient,
                 event_log: SyncEventLog,
                 clock: Clock = utc_now,
                 retry_policy: Optional[RetryPolicy] = None,
                 concurrency: int = settings.SYNC_BATCH_CONCURRENCY,
                 inter_job_delay: float = settings.SYNC_INTER_JOB_DELAY,
                 stage_timeout: float = settings.SYNC_STAGE_TIMEOUT,
                 dead_letter_limit: int = settings.SYNC_DEAD_LETTER_MAX_ENTRIES,
                 dead_letter_retention_days: int = settings.SYNC_DEAD_LETTER_RETENTION_DAYS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.repository = repository
        self.catalog = catalog
        self.marketplace = marketplace
        self.event_log = event_log
        self.clock = clock
        self.retry_policy = retry_policy
        self.concurrency = max(1, concurrency)
        self.inter_job_delay = inter_job_delay
        self.stage_timeout = stage_timeout
        self.dead_letter_limit = dead_letter_limit
        self.dead_letter_retention_days = dead_letter_retention_days
        self.sleep = sleep

        self._tasks: Set[asyncio.Task] = set()
        self._item_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_refs: Dict[Tuple[str, str], int] = {}
        self._dead_letters: Dict[str, Dict[str, Any]] = {}

    def launch(self, batch_id: str) -> asyncio.Task:
        return self._track(self.run_batch(batch_id), f"batch-{batch_id}")

    def launch_job(self, sync_id: str) -> asyncio.Task:
        return self._track(self.run_job(sync_id), f"job-{sync_id}")

    def _track(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self):
        """Wait for every in-flight batch and job task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_batch(self, batch_id: str):
        batch = await self.repository.get_batch(batch_id)
        if batch is None:
            logger.error("Batch not found", batch_id=batch_id)
            return

        logger.info("Starting batch sync", batch_id=batch_id, target=batch.target.value,
                    jobs=len(batch.job_ids))
        started = time.monotonic()
        semaphore = asyncio.Semaphore(self.concurrency)
        last_index = len(batch.job_ids) - 1

        async def run_one(index: int, sync_id: str):
            async with semaphore:
                await self.run_job(sync_id)
                if self.inter_job_delay and index < last_index:
                    await self.sleep(self.inter_job_delay)

        results = await asyncio.gather(
            *(run_one(index, sync_id) for index, sync_id in enumerate(batch.job_ids)),
            return_exceptions=True,
        )
        for sync_id, result in zip(batch.job_ids, results):
            if isinstance(result, BaseException):
                logger.error("Job task crashed", batch_id=batch_id, sync_id=sync_id,
                             error=str(result))

        jobs = await self.repository.get_jobs(batch.job_ids)
        failed = sum(1 for job in jobs if job.status == SyncJobStatus.ERROR)
        performance_logger.log_batch_performance(
            batch_id, batch.target.value, len(jobs), failed, time.monotonic() - started
        )

    async def run_job(self, sync_id: str):
        """Drive one job to a terminal state. Never raises for job failures."""
        job = await self.repository.get_job(sync_id)
        if job is None:
            logger.error("Sync job not found", sync_id=sync_id)
            return
        if job.is_terminal:
            return

        async with self._item_lock((job.item_id, job.target.value)):
            # Reload under the lock; another runner may have finished it
            job = await self.repository.get_job(sync_id)
            if job is None or job.is_terminal:
                return

            sync_logger = SyncLogger(sync_id, job.target.value, job.batch_id)
            try:
                await self._execute(job, sync_logger)
            except Exception as e:
                sync_logger.error("Unexpected failure while running sync job", error=str(e))
                await self._finish_error(job, ExecutionError(classify_error(e)), sync_logger)

    async def _execute(self, job: SyncJob, sync_logger: SyncLogger):
        if await self._is_cancelled(job):
            await self._finish_cancelled(job, sync_logger)
            return

        if job.status == SyncJobStatus.QUEUED:
            job.mark_running(self.clock())
            await self.repository.save_job(job)
            await self.event_log.info(job.sync_id, f"Processing {job.item_id}...")

        ctx = StageContext(
            job=job,
            catalog=self.catalog,
            marketplace=self.marketplace,
            timeout=self.stage_timeout,
        )
        policy = (self.retry_policy or get_retry_policy(job.target.value)).with_max_retries(job.max_retries)

        for stage in get_pipeline(job.job_type):
            if await self._is_cancelled(job):
                await self._finish_cancelled(job, sync_logger)
                return

            await self.event_log.info(job.sync_id, stage.describe(job.target.value), stage=stage.name)
            try:
                await self._run_stage(stage, ctx, policy, sync_logger)
            except ExecutionError as e:
                await self._finish_error(job, e, sync_logger)
                return

        await self._finish_success(job, ctx, sync_logger)

    async def _run_stage(self, stage: Stage, ctx: StageContext, policy: RetryPolicy,
                         sync_logger: SyncLogger):
        attempt = 0
        while True:
            attempt += 1
            try:
                await stage.run(ctx)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                classified = classify_error(e)
                if not policy.should_retry(classified, attempt):
                    raise ExecutionError(classified, stage=stage.name, attempts=attempt) from e

                delay = policy.delay_for(attempt, classified)
                sync_logger.warning(
                    "Stage failed, retrying",
                    stage=stage.name,
                    error_kind=classified.kind.value,
                    attempt=attempt,
                    delay=round(delay, 2),
                )
                await self.event_log.warning(
                    ctx.job.sync_id,
                    f"{stage.name} failed ({classified.kind.value}); retrying in "
                    f"{format_retry_time(delay)} (attempt {attempt + 1}/{policy.max_attempts})",
                    stage=stage.name,
                    error_kind=classified.kind.value,
                    error=classified.original_message,
                )
                await self.sleep(delay)

    async def _is_cancelled(self, job: SyncJob) -> bool:
        if not job.batch_id:
            return False
        batch = await self.repository.get_batch(job.batch_id)
        return batch is not None and batch.cancelled

    async def _finish_success(self, job: SyncJob, ctx: StageContext, sync_logger: SyncLogger):
        if not job.mark_terminal(SyncJobStatus.SUCCESS, self.clock()):
            return
        await self.repository.save_job(job)

        target_name = TARGET_NAMES.get(job.target.value, job.target.value)
        message = _SUCCESS_MESSAGES[job.job_type.value].format(target=target_name)
        details = {"external_id": ctx.payload.get("external_id")}
        if "price" in ctx.payload:
            details["price"] = ctx.payload["price"]
        await self.event_log.append(job.sync_id, SyncEventType.SUCCESS, f"✓ {message}", details)

        await self._update_catalog(job, "synced")
        sync_logger.info("Sync job completed", item_id=job.item_id)

    async def _finish_error(self, job: SyncJob, error: ExecutionError, sync_logger: SyncLogger):
        classified = error.classified
        if not job.mark_terminal(
            SyncJobStatus.ERROR,
            self.clock(),
            error_message=classified.original_message,
            error_kind=classified.kind.value,
            retryable=classified.retryable,
        ):
            return
        await self.repository.save_job(job)

        await self.event_log.append(
            job.sync_id,
            SyncEventType.ERROR,
            f"✗ Sync failed: {classified.kind.value}",
            {
                **classified.to_dict(),
                "stage": error.stage,
                "attempts": error.attempts,
            },
        )
        await self._update_catalog(job, "error", classified.original_message)

        if classified.retryable:
            self._add_dead_letter({
                "sync_id": job.sync_id,
                "item_id": job.item_id,
                "tenant_id": job.tenant_id,
                "target": job.target.value,
                "job_type": job.job_type.value,
                "batch_id": job.batch_id,
                "error_kind": classified.kind.value,
                "error_message": classified.original_message,
                "attempts": error.attempts,
                "failed_at": job.completed_at,
            })

        sync_logger.error(
            "Sync job failed",
            item_id=job.item_id,
            error_kind=classified.kind.value,
            stage=error.stage,
            attempts=error.attempts,
            error=classified.original_message,
        )

    async def _finish_cancelled(self, job: SyncJob, sync_logger: SyncLogger):
        job.cancelled = True
        if not job.mark_terminal(
            SyncJobStatus.ERROR,
            self.clock(),
            error_message=CANCELLED_MESSAGE,
            error_kind=ErrorKind.UNKNOWN.value,
            retryable=False,
        ):
            return
        await self.repository.save_job(job)
        await self.event_log.append(job.sync_id, SyncEventType.ERROR, CANCELLED_MESSAGE,
                                    {"cancelled": True})
        await self._update_catalog(job, "error", CANCELLED_MESSAGE)
        sync_logger.info("Sync job cancelled", item_id=job.item_id)

    async def _update_catalog(self, job: SyncJob, status: str, error: Optional[str] = None):
        try:
            await self.catalog.update_sync_status(job.item_id, job.target.value, status, error)
        except Exception as e:
            logger.error("Failed to update catalog sync status", sync_id=job.sync_id,
                         item_id=job.item_id, error=str(e))

    async def cancel_batch(self, batch_id: str, tenant_id: Optional[str] = None) -> BatchSyncOperation:
        """
        Mark a batch cancelled. Running jobs stop at their next stage
        boundary; finished jobs are left alone.
        """
        batch = await self.repository.get_batch(batch_id)
        if batch is None or (tenant_id is not None and batch.tenant_id != tenant_id):
            raise NotFoundError("batch", batch_id)

        if not batch.cancelled:
            batch.cancelled = True
            batch.cancelled_at = self.clock()
            await self.repository.save_batch(batch)
            logger.info("Batch cancelled", batch_id=batch_id)
        return batch

    def list_dead_letters(self, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            dict(entry) for entry in self._dead_letters.values()
            if tenant_id is None or entry["tenant_id"] == tenant_id
        ]

    def get_dead_letter(self, sync_id: str) -> Optional[Dict[str, Any]]:
        entry = self._dead_letters.get(sync_id)
        return dict(entry) if entry else None

    def pop_dead_letter(self, sync_id: str) -> Optional[Dict[str, Any]]:
        return self._dead_letters.pop(sync_id, None)

    def cleanup_dead_letters(self, older_than_days: Optional[int] = None) -> int:
        """
        Drop dead letters that failed more than `older_than_days` ago.

        Returns:
            Number of entries removed
        """
        days = self.dead_letter_retention_days if older_than_days is None else older_than_days
        cutoff = self.clock() - timedelta(days=days)
        expired = [
            sync_id for sync_id, entry in self._dead_letters.items()
            if entry["failed_at"] is not None and entry["failed_at"] < cutoff
        ]
        for sync_id in expired:
            del self._dead_letters[sync_id]
        if expired:
            logger.info("Cleaned up dead letters", removed=len(expired), older_than_days=days)
        return len(expired)

    def _add_dead_letter(self, entry: Dict[str, Any]):
        self._dead_letters[entry["sync_id"]] = entry
        self.cleanup_dead_letters()
        # oldest first, in insertion order
        while len(self._dead_letters) > self.dead_letter_limit:
            evicted = next(iter(self._dead_letters))
            del self._dead_letters[evicted]
            logger.warning("Dead letter store full, evicted oldest entry", sync_id=evicted)

    @asynccontextmanager
    async def _item_lock(self, key: Tuple[str, str]):
        lock = self._item_locks.setdefault(key, asyncio.Lock())
        self._lock_refs[key] = self._lock_refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[key] -= 1
            if not self._lock_refs[key]:
                del self._lock_refs[key]
                del self._item_locks[key]
