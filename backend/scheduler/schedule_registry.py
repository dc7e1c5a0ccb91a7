"""
Schedule Registry
Owns schedule configurations and their timers. A timer fire is turned into
a FireCommand on a bounded queue; executor tasks drain the queue and hand
each command to the sync dispatcher.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from config.settings import settings
from database.models import ScheduleConfig, ScheduleCreate, ScheduleUpdate
from database.repositories import ScheduleRepository
from utils.clock import Clock, utc_now
from utils.exceptions import NotFoundError, SchedulingError, SyncValidationError

from .cron_expression import CronExpression
from .cron_manager import CronManager

logger = logging.getLogger(__name__)


class FireCommand(BaseModel):
    """Work item produced by a timer fire."""
    schedule: ScheduleConfig
    fired_at: datetime


class ScheduleRegistry:
    """Manages cron-triggered sync schedules."""

    def __init__(self,
                 repository: ScheduleRepository,
                 dispatcher,
                 cron_manager: Optional[CronManager] = None,
                 clock: Clock = utc_now,
                 queue_size: int = settings.SCHEDULER_FIRE_QUEUE_SIZE,
                 workers: int = settings.SCHEDULER_EXECUTOR_WORKERS):
        self.repository = repository
        self.dispatcher = dispatcher
        self.cron_manager = cron_manager or CronManager()
        self.clock = clock
        self.queue_size = queue_size
        self.worker_count = max(1, workers)

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start timers for every enabled schedule in the repository."""
        if self._running:
            return

        logger.info("Starting schedule registry...")
        self.cron_manager.start()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"schedule-executor-{n}")
            for n in range(self.worker_count)
        ]
        self._running = True

        now = self.clock()
        armed = 0
        for schedule in await self.repository.list():
            if not schedule.enabled:
                continue
            if schedule.next_run_at is None or schedule.next_run_at <= now:
                if schedule.next_run_at is not None:
                    logger.warning(
                        f"Schedule {schedule.id} missed its run at "
                        f"{schedule.next_run_at.isoformat()}; not replaying"
                    )
                schedule.next_run_at = CronExpression.next_run(schedule.cron_expression, now)
                await self.repository.save(schedule)
            if self._arm(schedule):
                armed += 1

        logger.info(f"Schedule registry started with {armed} active timers")

    async def stop(self):
        """Cancel all timers and executor tasks. Schedules are kept."""
        if not self._running:
            return

        logger.info("Stopping schedule registry...")
        self._running = False
        self.cron_manager.stop()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    async def wait_idle(self):
        """Block until every queued fire has been handed to the dispatcher."""
        if self._queue is not None:
            await self._queue.join()

    async def add_schedule(self, data: ScheduleCreate) -> ScheduleConfig:
        """
        Register a new schedule.

        Raises:
            SyncValidationError: If the cron expression is malformed
        """
        cron_expression = CronExpression.ensure_valid(data.cron_expression)
        now = self.clock()

        schedule = ScheduleConfig(
            id=f"schedule_{uuid.uuid4().hex[:12]}",
            **data.model_dump(exclude={"cron_expression"}),
            cron_expression=cron_expression,
            created_at=now,
            updated_at=now,
            next_run_at=CronExpression.next_run(cron_expression, now),
        )
        await self.repository.save(schedule)
        logger.info(f"Added schedule {schedule.id} ({schedule.name}) with cron '{cron_expression}'")

        if self._running and schedule.enabled:
            self._arm(schedule)
        return schedule

    async def update_schedule(self, schedule_id: str, patch: ScheduleUpdate) -> Optional[ScheduleConfig]:
        """Apply a partial update. Returns None for an unknown schedule."""
        schedule = await self.repository.get(schedule_id)
        if schedule is None:
            return None

        changes = patch.model_dump(exclude_unset=True)
        if "name" in changes and not (changes["name"] or "").strip():
            raise SyncValidationError("Schedule name must not be empty", code="INVALID_SCHEDULE",
                                      details={"field": "name"})
        if changes.get("cron_expression") is not None:
            changes["cron_expression"] = CronExpression.ensure_valid(changes["cron_expression"])

        self.cron_manager.cancel(schedule_id)

        now = self.clock()
        cron_changed = (
            "cron_expression" in changes
            and changes["cron_expression"] != schedule.cron_expression
        )
        for field, value in changes.items():
            if value is None and field not in ("store_id",):
                continue
            if field == "options":
                value = patch.options
            setattr(schedule, field, value)

        if cron_changed or schedule.next_run_at is None or schedule.next_run_at <= now:
            schedule.next_run_at = CronExpression.next_run(schedule.cron_expression, now)
        schedule.updated_at = now
        await self.repository.save(schedule)
        logger.info(f"Updated schedule {schedule_id}: {sorted(changes)}")

        if self._running and schedule.enabled:
            self._arm(schedule)
        return schedule

    async def remove_schedule(self, schedule_id: str) -> bool:
        self.cron_manager.cancel(schedule_id)
        removed = await self.repository.delete(schedule_id)
        if removed:
            logger.info(f"Removed schedule {schedule_id}")
        return removed

    async def enable_schedule(self, schedule_id: str) -> Optional[ScheduleConfig]:
        schedule = await self.repository.get(schedule_id)
        if schedule is None:
            return None

        now = self.clock()
        schedule.enabled = True
        schedule.next_run_at = CronExpression.next_run(schedule.cron_expression, now)
        schedule.updated_at = now
        await self.repository.save(schedule)
        logger.info(f"Enabled schedule {schedule_id}")

        if self._running:
            self._arm(schedule)
        return schedule

    async def disable_schedule(self, schedule_id: str) -> Optional[ScheduleConfig]:
        schedule = await self.repository.get(schedule_id)
        if schedule is None:
            return None

        self.cron_manager.cancel(schedule_id)
        schedule.enabled = False
        schedule.updated_at = self.clock()
        await self.repository.save(schedule)
        logger.info(f"Disabled schedule {schedule_id}")
        return schedule

    async def trigger_now(self, schedule_id: str) -> List[str]:
        """
        Submit the schedule's work immediately, whatever its enabled flag or
        timer state. Errors from the dispatcher propagate to the caller.

        Returns:
            Batch ids created for this run
        """
        schedule = await self.repository.get(schedule_id)
        if schedule is None:
            raise NotFoundError("schedule", schedule_id)

        now = self.clock()
        schedule.last_run_at = now
        schedule.updated_at = now
        await self.repository.save(schedule)

        logger.info(f"Manually triggering schedule {schedule.name} ({schedule_id})")
        return await self.dispatcher.submit_scheduled(schedule)

    async def get_schedule(self, schedule_id: str) -> Optional[ScheduleConfig]:
        return await self.repository.get(schedule_id)

    async def list_schedules(self, tenant_id: Optional[str] = None) -> List[ScheduleConfig]:
        schedules = await self.repository.list(tenant_id)
        return sorted(schedules, key=lambda s: s.created_at)

    async def get_stats(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Counts plus the ten soonest upcoming runs."""
        schedules = await self.repository.list(tenant_id)
        enabled = [s for s in schedules if s.enabled]
        next_runs = sorted(
            (
                {"schedule_id": s.id, "name": s.name, "next_run_at": s.next_run_at}
                for s in enabled if s.next_run_at is not None
            ),
            key=lambda run: run["next_run_at"],
        )[:10]

        return {
            "total_schedules": len(schedules),
            "enabled_schedules": len(enabled),
            "disabled_schedules": len(schedules) - len(enabled),
            "active_timers": sum(1 for s in schedules if self.cron_manager.has_timer(s.id)),
            "next_runs": next_runs,
        }

    def _arm(self, schedule: ScheduleConfig) -> bool:
        """Arm the schedule's timer. A rejected timer is logged, not raised."""
        try:
            return self.cron_manager.arm(
                schedule.id,
                schedule.next_run_at,
                self._on_timer,
                schedule_id=schedule.id,
            )
        except SchedulingError as e:
            logger.error(f"Could not arm schedule {schedule.id}: {e.message}")
            return False

    async def _on_timer(self, schedule_id: str):
        """Timer callback. Never raises; always re-arms."""
        self.cron_manager.release(schedule_id)
        try:
            schedule = await self.repository.get(schedule_id)
            if schedule is None or not schedule.enabled:
                return

            now = self.clock()
            schedule.last_run_at = now
            schedule.next_run_at = CronExpression.next_run(schedule.cron_expression, now)
            schedule.updated_at = now
            await self.repository.save(schedule)

            logger.info(f"Executing scheduled job: {schedule.name} ({schedule_id})")
            try:
                self._queue.put_nowait(FireCommand(schedule=schedule, fired_at=now))
            except asyncio.QueueFull:
                logger.error(f"Fire queue is full; dropping run of schedule {schedule_id}")
        except Exception as e:
            logger.error(f"Error executing scheduled job {schedule_id}: {str(e)}")
        finally:
            await self._rearm(schedule_id)

    async def _rearm(self, schedule_id: str):
        if not self._running:
            return
        try:
            schedule = await self.repository.get(schedule_id)
            if schedule is None or not schedule.enabled:
                return
            if self.cron_manager.has_timer(schedule_id):
                return

            now = self.clock()
            if schedule.next_run_at is None or schedule.next_run_at <= now:
                schedule.next_run_at = CronExpression.next_run(schedule.cron_expression, now)
                await self.repository.save(schedule)
            self._arm(schedule)
        except Exception as e:
            logger.error(f"Failed to re-arm schedule {schedule_id}: {str(e)}")

    async def _worker(self, index: int):
        while True:
            command = await self._queue.get()
            try:
                batch_ids = await self.dispatcher.submit_scheduled(command.schedule)
                logger.info(
                    f"Schedule {command.schedule.id} submitted {len(batch_ids)} batch(es)"
                )
            except Exception as e:
                logger.error(
                    f"Executor {index} failed to submit schedule {command.schedule.id}: {str(e)}"
                )
            finally:
                self._queue.task_done()
