"""
Job Queue package: sync dispatch, batch execution and status
"""

from .batch_coordinator import BatchCoordinator
from .dispatcher import BatchSubmission, SyncDispatcher
from .error_classifier import ClassifiedError, ErrorKind, classify_error, format_retry_time
from .event_log import SyncEventLog
from .retry_policy import RetryPolicy, get_retry_policy
from .status import SyncStatusService

__all__ = [
    "BatchCoordinator",
    "BatchSubmission",
    "ClassifiedError",
    "ErrorKind",
    "RetryPolicy",
    "SyncDispatcher",
    "SyncEventLog",
    "SyncStatusService",
    "classify_error",
    "format_retry_time",
    "get_retry_policy",
]
