"""
Schedule-driven sync
Cron validation, APScheduler timers and the schedule registry.
"""

from .cron_expression import CronExpression, CronValidationResult
from .cron_manager import CronManager
from .schedule_registry import FireCommand, ScheduleRegistry

__all__ = ["CronExpression", "CronValidationResult", "CronManager", "FireCommand", "ScheduleRegistry"]
