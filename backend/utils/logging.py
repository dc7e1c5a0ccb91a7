"""
Logging configuration and utilities
"""

import logging
import logging.config
from typing import Any, Dict, Optional

import structlog

from config.settings import settings


def setup_logging():
    """Set up application logging configuration."""

    # Configure standard library logging
    logging_config = settings.get_log_config()
    logging.config.dictConfig(logging_config)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if settings.is_development()
            else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class SyncLogger:
    """Logger bound to one sync job and its marketplace target."""

    def __init__(self, sync_id: str, target: str, batch_id: Optional[str] = None):
        self.sync_id = sync_id
        self.target = target
        self.batch_id = batch_id
        self.logger = get_logger(f"sync.{target}")

    def _context(self, **kwargs) -> Dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "batch_id": self.batch_id,
            "target": self.target,
            **kwargs,
        }

    def info(self, message: str, **kwargs):
        """Log info message with sync context."""
        self.logger.info(message, **self._context(**kwargs))

    def warning(self, message: str, **kwargs):
        """Log warning message with sync context."""
        self.logger.warning(message, **self._context(**kwargs))

    def error(self, message: str, **kwargs):
        """Log error message with sync context."""
        self.logger.error(message, **self._context(**kwargs))

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **self._context(**kwargs))


class PerformanceLogger:
    """Logger for batch throughput."""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_batch_performance(self, batch_id: str, target: str, total: int,
                              failed: int, duration: float):
        """Log batch sync performance metrics."""
        rate = total / duration if duration > 0 else 0

        self.logger.info(
            "Batch sync performance",
            batch_id=batch_id,
            target=target,
            jobs=total,
            duration_seconds=round(duration, 2),
            jobs_per_second=round(rate, 2),
            errors=failed,
            success_rate=round((total - failed) / total * 100, 2)
            if total > 0 else 0
        )


performance_logger = PerformanceLogger()
