"""
Cron Expression
Validation and next-run computation for five-field cron expressions.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytz
from croniter import CroniterBadCronError, CroniterBadDateError, croniter
from pydantic import BaseModel

from config.settings import settings
from utils.exceptions import SyncValidationError

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"^\d+$")


class CronValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    field: Optional[str] = None


class CronExpression:
    """Helpers for `minute hour day-of-month month day-of-week` expressions."""

    # (field name, minimum, maximum, message shown when the field is rejected)
    FIELDS = [
        ("minute", 0, 59, "Invalid minute field (0-59)"),
        ("hour", 0, 23, "Invalid hour field (0-23)"),
        ("day_of_month", 1, 31, "Invalid day of month field (1-31)"),
        ("month", 1, 12, "Invalid month field (1-12)"),
        ("day_of_week", 0, 7, "Invalid day of week field (0-7)"),
    ]

    PRESETS = [
        {"name": "Every 15 minutes", "cron_expression": "*/15 * * * *",
         "description": "Runs every 15 minutes"},
        {"name": "Every 30 minutes", "cron_expression": "*/30 * * * *",
         "description": "Runs every 30 minutes"},
        {"name": "Every hour", "cron_expression": "0 * * * *",
         "description": "Runs at the start of every hour"},
        {"name": "Every 6 hours", "cron_expression": "0 */6 * * *",
         "description": "Runs every 6 hours"},
        {"name": "Daily at midnight", "cron_expression": "0 0 * * *",
         "description": "Runs daily at 12:00 AM"},
        {"name": "Daily at 9 AM", "cron_expression": "0 9 * * *",
         "description": "Runs daily at 9:00 AM"},
        {"name": "Weekly on Monday", "cron_expression": "0 0 * * 1",
         "description": "Runs every Monday at midnight"},
        {"name": "Monthly on 1st", "cron_expression": "0 0 1 * *",
         "description": "Runs on the 1st of every month at midnight"},
    ]

    @staticmethod
    def _is_valid_field(field: str, minimum: int, maximum: int) -> bool:
        for part in field.split(","):
            if not part:
                return False

            base, slash, step = part.partition("/")
            if slash:
                if not _NUMBER.match(step) or not 1 <= int(step) <= maximum:
                    return False
                # Steps only apply to `*` or an explicit range
                if base != "*" and "-" not in base:
                    return False

            if base == "*":
                continue

            start, dash, end = base.partition("-")
            if dash:
                if not (_NUMBER.match(start) and _NUMBER.match(end)):
                    return False
                if not minimum <= int(start) <= int(end) <= maximum:
                    return False
            elif not (_NUMBER.match(base) and minimum <= int(base) <= maximum):
                return False

        return True

    @classmethod
    def validate(cls, cron_expr: str) -> CronValidationResult:
        """Check field count and per-field bounds."""
        if not isinstance(cron_expr, str):
            return CronValidationResult(valid=False, error="Cron expression must be a string")

        parts = cron_expr.split()
        if len(parts) != 5:
            return CronValidationResult(valid=False, error="Cron expression must have exactly 5 parts")

        for value, (name, minimum, maximum, message) in zip(parts, cls.FIELDS):
            if not cls._is_valid_field(value, minimum, maximum):
                return CronValidationResult(valid=False, error=message, field=name)

        if not cls._has_match(" ".join(parts)):
            return CronValidationResult(
                valid=False,
                error="Cron expression never matches a calendar date",
                field="day_of_month",
            )

        return CronValidationResult(valid=True)

    @staticmethod
    def _has_match(cron_expr: str) -> bool:
        """Whether the expression fires at least once, e.g. `0 0 31 2 *` never does."""
        try:
            croniter(
                cron_expr,
                datetime.now(timezone.utc),
                max_years_between_matches=settings.CRON_MAX_YEARS_BETWEEN_MATCHES,
            ).get_next(datetime)
        except (CroniterBadDateError, CroniterBadCronError):
            return False
        return True

    @classmethod
    def ensure_valid(cls, cron_expr: str) -> str:
        """Return the normalized expression or raise SyncValidationError."""
        result = cls.validate(cron_expr)
        if not result.valid:
            raise SyncValidationError(
                result.error,
                code="INVALID_CRON",
                details={"cron_expression": cron_expr, "field": result.field},
            )
        return " ".join(cron_expr.split())

    @staticmethod
    def next_run(cron_expr: str, from_time: datetime, tz_name: Optional[str] = None) -> datetime:
        """
        Compute the first fire time strictly after `from_time`.

        Fields are evaluated in the scheduler timezone; the result is UTC.
        When no match can be found, the run is pushed CRON_FALLBACK_MINUTES
        ahead and a warning is logged.
        """
        if from_time.tzinfo is None:
            from_time = from_time.replace(tzinfo=timezone.utc)

        tz = pytz.timezone(tz_name or settings.SCHEDULER_TIMEZONE)
        local_start = from_time.astimezone(tz)

        try:
            itr = croniter(
                cron_expr,
                local_start,
                max_years_between_matches=settings.CRON_MAX_YEARS_BETWEEN_MATCHES,
            )
            candidate = itr.get_next(datetime)
            while candidate <= from_time:
                candidate = itr.get_next(datetime)
            return candidate.astimezone(timezone.utc)
        except (ValueError, KeyError) as e:
            fallback = from_time + timedelta(minutes=settings.CRON_FALLBACK_MINUTES)
            logger.warning(
                f"Could not evaluate cron expression '{cron_expr}' ({e}); "
                f"falling back to {fallback.isoformat()}"
            )
            return fallback.astimezone(timezone.utc)

    @classmethod
    def describe(cls, cron_expr: str) -> str:
        """Get a human-readable description of a cron expression."""
        normalized = " ".join(cron_expr.split())
        for preset in cls.PRESETS:
            if preset["cron_expression"] == normalized:
                return preset["description"]

        minute, hour, day_of_month, month, day_of_week = (normalized.split() + ["*"] * 5)[:5]
        if _NUMBER.match(minute) and _NUMBER.match(hour) and month == "*":
            at = f"{int(hour):02d}:{int(minute):02d}"
            if day_of_month == "*" and day_of_week == "*":
                return f"Runs daily at {at}"
            if day_of_month == "*" and _NUMBER.match(day_of_week):
                return f"Runs every {_WEEKDAYS[int(day_of_week) % 7]} at {at}"

        return f"Custom schedule: {normalized}"

    @classmethod
    def get_presets(cls) -> List[Dict[str, str]]:
        return [dict(preset) for preset in cls.PRESETS]


_WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
