"""
Service container
Builds and owns the sync orchestration components for one application.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from connectors.marketplace import MarketplaceClient, SimulatedMarketplaceClient
from database.repositories import (
    CatalogStore,
    InMemoryCatalogStore,
    InMemoryScheduleRepository,
    InMemorySyncRepository,
    ScheduleRepository,
    SyncRepository,
)
from job_queue.batch_coordinator import BatchCoordinator
from job_queue.dispatcher import SyncDispatcher
from job_queue.event_log import SyncEventLog
from job_queue.retry_policy import RetryPolicy
from job_queue.status import SyncStatusService
from scheduler.cron_manager import CronManager
from scheduler.schedule_registry import ScheduleRegistry
from utils.clock import Clock, utc_now
from websocket.connection_manager import ConnectionManager

from .settings import settings

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    schedule_repository: ScheduleRepository
    sync_repository: SyncRepository
    catalog: CatalogStore
    marketplace: MarketplaceClient
    event_log: SyncEventLog
    coordinator: BatchCoordinator
    dispatcher: SyncDispatcher
    registry: ScheduleRegistry
    status: SyncStatusService
    connection_manager: ConnectionManager

    async def start(self):
        await self.registry.start()
        logger.info("Sync services started")

    async def stop(self):
        await self.registry.stop()
        await self.coordinator.join()
        logger.info("Sync services stopped")


def build_services(schedule_repository: Optional[ScheduleRepository] = None,
                   sync_repository: Optional[SyncRepository] = None,
                   catalog: Optional[CatalogStore] = None,
                   marketplace: Optional[MarketplaceClient] = None,
                   clock: Clock = utc_now,
                   retry_policy: Optional[RetryPolicy] = None,
                   inter_job_delay: float = settings.SYNC_INTER_JOB_DELAY) -> SyncServices:
    """Wire the components together. Missing collaborators get in-memory defaults."""
    schedule_repository = schedule_repository or InMemoryScheduleRepository()
    sync_repository = sync_repository or InMemorySyncRepository()
    catalog = catalog or InMemoryCatalogStore(clock=clock)
    marketplace = marketplace or SimulatedMarketplaceClient()

    event_log = SyncEventLog(sync_repository, clock=clock)
    connection_manager = ConnectionManager(sync_repository)
    event_log.subscribe(connection_manager.publish_sync_event)

    coordinator = BatchCoordinator(
        sync_repository,
        catalog,
        marketplace,
        event_log,
        clock=clock,
        retry_policy=retry_policy,
        inter_job_delay=inter_job_delay,
    )
    dispatcher = SyncDispatcher(sync_repository, catalog, coordinator, event_log, clock=clock)
    registry = ScheduleRegistry(schedule_repository, dispatcher, CronManager(), clock=clock)

    return SyncServices(
        schedule_repository=schedule_repository,
        sync_repository=sync_repository,
        catalog=catalog,
        marketplace=marketplace,
        event_log=event_log,
        coordinator=coordinator,
        dispatcher=dispatcher,
        registry=registry,
        status=SyncStatusService(sync_repository),
        connection_manager=connection_manager,
    )
