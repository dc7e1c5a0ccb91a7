"""
Exception hierarchy for the sync orchestration core.

Only SyncValidationError and NotFoundError are meant to reach API callers;
ExecutionError and SchedulingError are caught and logged inside the
batch and scheduler loops.
"""

from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """Base class for sync orchestration errors."""

    status_code = 500
    code = "SYNC_ERROR"

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class SyncValidationError(SyncError):
    """Request rejected synchronously; nothing was persisted."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)
        if self.code == "ITEMS_NOT_FOUND":
            self.status_code = 404


class NotFoundError(SyncError):
    """Unknown schedule, batch or job."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource.replace('_', ' ').capitalize()} {identifier} not found",
            code=f"{resource.upper()}_NOT_FOUND",
        )
        self.resource = resource
        self.identifier = identifier


class OwnershipError(SyncError):
    """Raised by the catalog when items are missing or owned by another tenant."""

    status_code = 404
    code = "ITEMS_NOT_FOUND"

    def __init__(self, tenant_id: str, missing_ids: List[str]):
        super().__init__(
            "Some products not found or access denied",
            details={"tenant_id": tenant_id, "missing_ids": missing_ids},
        )
        self.tenant_id = tenant_id
        self.missing_ids = missing_ids


class ExecutionError(SyncError):
    """A job stage failed terminally; carries the classified failure."""

    code = "EXECUTION_ERROR"

    def __init__(self, classified, stage: Optional[str] = None, attempts: int = 1):
        super().__init__(
            classified.original_message,
            code=classified.kind.value,
            details={"stage": stage, "attempts": attempts},
        )
        self.classified = classified
        self.stage = stage
        self.attempts = attempts


class SchedulingError(SyncError):
    """Internal registry or timer failure."""

    code = "SCHEDULING_ERROR"
