"""
Database Models
Pydantic models for schedules, sync jobs, batches and their events
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config.settings import settings


class JobType(str, Enum):
    """What a sync job moves between the catalog and a marketplace."""
    PRODUCTS = "products"
    INVENTORY = "inventory"
    ORDERS = "orders"


class SyncTarget(str, Enum):
    """Supported marketplaces."""
    SHOPEE = "shopee"
    TIKTOK = "tiktok"


class SchedulePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ConflictResolution(str, Enum):
    PLATFORM_WINS = "platform_wins"
    LOCAL_WINS = "local_wins"
    MANUAL_REVIEW = "manual_review"


class ScheduleOptions(BaseModel):
    """Per-schedule execution options."""
    batch_size: int = Field(default=settings.SYNC_MAX_BATCH_SIZE, ge=1)
    max_retries: int = Field(default=settings.SYNC_MAX_RETRIES, ge=0, le=10)
    priority: SchedulePriority = SchedulePriority.NORMAL
    conflict_resolution: ConflictResolution = ConflictResolution.PLATFORM_WINS

    @field_validator("batch_size")
    @classmethod
    def _cap_batch_size(cls, value: int) -> int:
        if value > settings.SYNC_MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be at most {settings.SYNC_MAX_BATCH_SIZE}")
        return value


class ScheduleCreate(BaseModel):
    """Input for registering a schedule."""
    name: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    store_id: Optional[str] = None
    job_type: JobType = JobType.PRODUCTS
    cron_expression: str
    enabled: bool = True
    target: SyncTarget = SyncTarget(settings.DEFAULT_SYNC_TARGET)
    options: ScheduleOptions = Field(default_factory=ScheduleOptions)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ScheduleUpdate(BaseModel):
    """Partial update for a schedule; unset fields are left alone."""
    name: Optional[str] = None
    store_id: Optional[str] = None
    job_type: Optional[JobType] = None
    cron_expression: Optional[str] = None
    enabled: Optional[bool] = None
    target: Optional[SyncTarget] = None
    options: Optional[ScheduleOptions] = None
    metadata: Optional[Dict[str, Any]] = None


class ScheduleConfig(BaseModel):
    """A named, cron-triggered sync configuration for one tenant."""
    id: str
    name: str
    tenant_id: str
    store_id: Optional[str] = None
    job_type: JobType = JobType.PRODUCTS
    cron_expression: str
    enabled: bool = True
    target: SyncTarget = SyncTarget(settings.DEFAULT_SYNC_TARGET)
    options: ScheduleOptions = Field(default_factory=ScheduleOptions)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


class SyncJobStatus(str, Enum):
    """Per-item sync state. Transitions only move forward."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({SyncJobStatus.SUCCESS, SyncJobStatus.ERROR})

_STATUS_RANK = {
    SyncJobStatus.QUEUED: 0,
    SyncJobStatus.RUNNING: 1,
    SyncJobStatus.SUCCESS: 2,
    SyncJobStatus.ERROR: 2,
}


class SyncEventType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class SyncEvent(BaseModel):
    """One timestamped entry in a job's append-only history."""
    timestamp: datetime
    type: SyncEventType
    message: str
    details: Optional[Dict[str, Any]] = None


class SyncJob(BaseModel):
    """One item's sync attempt against one marketplace."""
    sync_id: str
    item_id: str
    tenant_id: str
    target: SyncTarget
    job_type: JobType = JobType.PRODUCTS
    batch_id: Optional[str] = None
    status: SyncJobStatus = SyncJobStatus.QUEUED
    max_retries: int = settings.SYNC_MAX_RETRIES
    options: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    cancelled: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, new_status: SyncJobStatus) -> bool:
        return _STATUS_RANK[new_status] > _STATUS_RANK[self.status]

    def mark_running(self, now: datetime) -> bool:
        """Move queued -> running. Returns False when the move is not allowed."""
        if not self.can_transition(SyncJobStatus.RUNNING):
            return False
        self.status = SyncJobStatus.RUNNING
        self.started_at = self.started_at or now
        return True

    def mark_terminal(self, status: SyncJobStatus, now: datetime,
                      error_message: Optional[str] = None,
                      error_kind: Optional[str] = None,
                      retryable: bool = False) -> bool:
        """Record the terminal state exactly once.

        Returns False (and changes nothing) when the job is already terminal.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")
        if not self.can_transition(status):
            return False
        self.status = status
        self.started_at = self.started_at or now
        self.completed_at = now
        if status == SyncJobStatus.ERROR:
            self.error_message = error_message
            self.error_kind = error_kind
            self.retryable = retryable
        return True


class BatchSource(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"
    RETRY = "retry"


class BatchSyncOperation(BaseModel):
    """A set of jobs submitted together.

    Counts, status and percentage are derived from the job states on read
    (see job_queue.status) and are never stored here.
    """
    batch_id: str
    tenant_id: str
    target: SyncTarget
    job_type: JobType = JobType.PRODUCTS
    job_ids: List[str] = Field(default_factory=list)
    source: BatchSource = BatchSource.MANUAL
    schedule_id: Optional[str] = None
    created_at: datetime
    cancelled: bool = False
    cancelled_at: Optional[datetime] = None


class CatalogItem(BaseModel):
    """Master catalog item as seen by the sync pipeline."""
    id: str
    tenant_id: str
    store_id: Optional[str] = None
    title: Optional[str] = None
    sku: Optional[str] = None
    base_price: Optional[Decimal] = None
    stock: int = 0
    images: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ItemSyncStatus(BaseModel):
    """Per (item, target) mapping status kept by the catalog."""
    item_id: str
    target: str
    status: str
    error: Optional[str] = None
    updated_at: Optional[datetime] = None
