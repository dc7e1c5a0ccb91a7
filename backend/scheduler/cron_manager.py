"""
Cron Manager
APScheduler integration owning one one-shot timer per armed schedule.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from config.settings import settings
from utils.exceptions import SchedulingError

logger = logging.getLogger(__name__)


class CronManager:
    """
    Keyed collection of cancellable timers.

    Each timer is a single APScheduler DateTrigger job whose id is the
    schedule id. The owner re-arms after every fire, so there is never more
    than one pending timer per schedule.
    """

    def __init__(self, timezone: str = settings.SCHEDULER_TIMEZONE):
        self.timezone = timezone
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._timers: Dict[str, Job] = {}

    def start(self):
        """Start the scheduler. Must be called from a running event loop."""
        if self.is_running():
            return

        logger.info("Starting cron scheduler")
        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=pytz.timezone(self.timezone),
        )
        self.scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed_listener, EVENT_JOB_MISSED)
        self.scheduler.start()

    def stop(self):
        """Stop the scheduler and drop every timer."""
        if self.is_running():
            logger.info("Stopping cron scheduler")
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self._timers.clear()

    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def arm(self, timer_id: str, run_at: datetime, func: Callable, **kwargs) -> bool:
        """
        Arm (or replace) the timer for `timer_id`.

        Args:
            timer_id: Unique identifier for the timer, the schedule id
            run_at: When the timer should fire
            func: Coroutine function to execute
            **kwargs: Additional arguments to pass to the function

        Returns:
            bool: True if the timer was armed

        Raises:
            SchedulingError: If APScheduler rejects the job
        """
        if not self.is_running():
            logger.warning(f"Cannot arm timer {timer_id}: scheduler is not running")
            return False

        try:
            job = self.scheduler.add_job(
                func=func,
                trigger=DateTrigger(run_date=run_at),
                id=timer_id,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                replace_existing=True,
                kwargs=kwargs,
            )
        except Exception as e:
            raise SchedulingError(f"Failed to arm timer {timer_id}: {str(e)}") from e
        self._timers[timer_id] = job
        logger.debug(f"Armed timer {timer_id}. Next run: {run_at.isoformat()}")
        return True

    def cancel(self, timer_id: str) -> bool:
        """Cancel a pending timer. Returns True if one was armed."""
        job = self._timers.pop(timer_id, None)
        if job is None:
            return False

        if self.scheduler is not None:
            try:
                self.scheduler.remove_job(timer_id)
            except JobLookupError:
                # Already fired and removed by APScheduler
                pass
        logger.debug(f"Cancelled timer {timer_id}")
        return True

    def release(self, timer_id: str):
        """Forget the handle of a timer that has just fired."""
        self._timers.pop(timer_id, None)

    def has_timer(self, timer_id: str) -> bool:
        return timer_id in self._timers

    def active_timers(self) -> int:
        return len(self._timers)

    def get_timers(self) -> List[Dict]:
        """
        Get all armed timers.

        Returns:
            List of timer information dictionaries
        """
        timers = []
        for timer_id, job in self._timers.items():
            timers.append({
                "id": timer_id,
                "trigger": str(job.trigger),
                "next_run_time": job.next_run_time,
            })
        return timers

    def _job_executed_listener(self, event):
        logger.debug(f"Timer {event.job_id} fired")

    def _job_error_listener(self, event):
        """Handle timer callbacks that raised."""
        logger.error(f"Timer {event.job_id} failed with error: {event.exception}")

    def _job_missed_listener(self, event):
        """Handle missed timers."""
        logger.warning(f"Timer {event.job_id} missed scheduled run time: {event.scheduled_run_time}")
