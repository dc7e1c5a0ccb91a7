"""
Repositories
Storage interfaces consumed by the sync core, plus in-memory implementations
used for development and tests.

Every in-memory repository stores and returns copies, so callers only see
what they explicitly saved (the same contract a database-backed store has).
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from utils.clock import Clock, utc_now
from utils.exceptions import OwnershipError

from .models import (
    BatchSyncOperation,
    CatalogItem,
    ItemSyncStatus,
    JobType,
    ScheduleConfig,
    SyncEvent,
    SyncJob,
)


class ScheduleRepository(ABC):
    """Persistence for schedule configurations."""

    @abstractmethod
    async def get(self, schedule_id: str) -> Optional[ScheduleConfig]:
        ...

    @abstractmethod
    async def list(self, tenant_id: Optional[str] = None) -> List[ScheduleConfig]:
        ...

    @abstractmethod
    async def save(self, schedule: ScheduleConfig) -> ScheduleConfig:
        ...

    @abstractmethod
    async def delete(self, schedule_id: str) -> bool:
        ...


class SyncRepository(ABC):
    """Persistence for sync jobs, batches and the ordered event history."""

    @abstractmethod
    async def insert_job(self, job: SyncJob) -> None:
        ...

    @abstractmethod
    async def insert_batch(self, batch: BatchSyncOperation, jobs: List[SyncJob]) -> None:
        """Persist a batch and all of its jobs in one step."""

    @abstractmethod
    async def save_job(self, job: SyncJob) -> None:
        ...

    @abstractmethod
    async def save_batch(self, batch: BatchSyncOperation) -> None:
        ...

    @abstractmethod
    async def get_job(self, sync_id: str) -> Optional[SyncJob]:
        ...

    @abstractmethod
    async def get_jobs(self, sync_ids: Iterable[str]) -> List[SyncJob]:
        ...

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[BatchSyncOperation]:
        ...

    @abstractmethod
    async def append_event(self, sync_id: str, event: SyncEvent) -> None:
        ...

    @abstractmethod
    async def list_events(self, sync_id: str) -> List[SyncEvent]:
        ...


class CatalogStore(ABC):
    """Catalog/mapping store owned by the rest of the back-office."""

    @abstractmethod
    async def lookup_owned(self, tenant_id: str, item_ids: List[str]) -> List[CatalogItem]:
        """Return the items, or raise OwnershipError if any is missing or foreign."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        ...

    @abstractmethod
    async def update_sync_status(self, item_id: str, target: str, status: str,
                                 error: Optional[str] = None) -> None:
        """Atomically update the (item, target) mapping status."""

    @abstractmethod
    async def list_sync_candidates(self, tenant_id: str, store_id: Optional[str],
                                   job_type: JobType) -> List[str]:
        """Item ids a scheduled run of this job type should cover."""


class InMemoryScheduleRepository(ScheduleRepository):
    """Dictionary-backed schedule store."""

    def __init__(self):
        self._schedules: Dict[str, ScheduleConfig] = {}

    async def get(self, schedule_id: str) -> Optional[ScheduleConfig]:
        schedule = self._schedules.get(schedule_id)
        return schedule.model_copy(deep=True) if schedule else None

    async def list(self, tenant_id: Optional[str] = None) -> List[ScheduleConfig]:
        return [
            schedule.model_copy(deep=True)
            for schedule in self._schedules.values()
            if tenant_id is None or schedule.tenant_id == tenant_id
        ]

    async def save(self, schedule: ScheduleConfig) -> ScheduleConfig:
        self._schedules[schedule.id] = schedule.model_copy(deep=True)
        return schedule

    async def delete(self, schedule_id: str) -> bool:
        return self._schedules.pop(schedule_id, None) is not None


class InMemorySyncRepository(SyncRepository):
    """Dictionary-backed job, batch and event store."""

    def __init__(self):
        self._jobs: Dict[str, SyncJob] = {}
        self._batches: Dict[str, BatchSyncOperation] = {}
        self._events: Dict[str, List[SyncEvent]] = {}

    async def insert_job(self, job: SyncJob) -> None:
        if job.sync_id in self._jobs:
            raise ValueError(f"Job {job.sync_id} already exists")
        self._jobs[job.sync_id] = job.model_copy(deep=True)
        self._events.setdefault(job.sync_id, [])

    async def insert_batch(self, batch: BatchSyncOperation, jobs: List[SyncJob]) -> None:
        if batch.batch_id in self._batches:
            raise ValueError(f"Batch {batch.batch_id} already exists")
        clashes = [job.sync_id for job in jobs if job.sync_id in self._jobs]
        if clashes:
            raise ValueError(f"Jobs already exist: {clashes}")

        self._batches[batch.batch_id] = batch.model_copy(deep=True)
        for job in jobs:
            self._jobs[job.sync_id] = job.model_copy(deep=True)
            self._events.setdefault(job.sync_id, [])

    async def save_job(self, job: SyncJob) -> None:
        self._jobs[job.sync_id] = job.model_copy(deep=True)

    async def save_batch(self, batch: BatchSyncOperation) -> None:
        self._batches[batch.batch_id] = batch.model_copy(deep=True)

    async def get_job(self, sync_id: str) -> Optional[SyncJob]:
        job = self._jobs.get(sync_id)
        return job.model_copy(deep=True) if job else None

    async def get_jobs(self, sync_ids: Iterable[str]) -> List[SyncJob]:
        return [
            self._jobs[sync_id].model_copy(deep=True)
            for sync_id in sync_ids
            if sync_id in self._jobs
        ]

    async def get_batch(self, batch_id: str) -> Optional[BatchSyncOperation]:
        batch = self._batches.get(batch_id)
        return batch.model_copy(deep=True) if batch else None

    async def append_event(self, sync_id: str, event: SyncEvent) -> None:
        self._events.setdefault(sync_id, []).append(event.model_copy(deep=True))

    async def list_events(self, sync_id: str) -> List[SyncEvent]:
        return [event.model_copy(deep=True) for event in self._events.get(sync_id, [])]

    def job_count(self) -> int:
        return len(self._jobs)

    def batch_count(self) -> int:
        return len(self._batches)


class InMemoryCatalogStore(CatalogStore):
    """Catalog stand-in keyed by item id."""

    def __init__(self, items: Optional[Iterable[CatalogItem]] = None, clock: Clock = utc_now):
        self.clock = clock
        self._items: Dict[str, CatalogItem] = {}
        self._sync_status: Dict[Tuple[str, str], ItemSyncStatus] = {}
        for item in items or []:
            self.add_item(item)

    def add_item(self, item: CatalogItem) -> None:
        self._items[item.id] = item.model_copy(deep=True)

    async def lookup_owned(self, tenant_id: str, item_ids: List[str]) -> List[CatalogItem]:
        missing = [
            item_id for item_id in item_ids
            if item_id not in self._items or self._items[item_id].tenant_id != tenant_id
        ]
        if missing:
            raise OwnershipError(tenant_id, missing)
        return [self._items[item_id].model_copy(deep=True) for item_id in item_ids]

    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def update_sync_status(self, item_id: str, target: str, status: str,
                                 error: Optional[str] = None) -> None:
        self._sync_status[(item_id, target)] = ItemSyncStatus(
            item_id=item_id,
            target=target,
            status=status,
            error=error,
            updated_at=self.clock(),
        )

    async def list_sync_candidates(self, tenant_id: str, store_id: Optional[str],
                                   job_type: JobType) -> List[str]:
        return [
            item.id for item in self._items.values()
            if item.tenant_id == tenant_id and (store_id is None or item.store_id == store_id)
        ]

    def get_sync_status(self, item_id: str, target: str) -> Optional[ItemSyncStatus]:
        return self._sync_status.get((item_id, target))
