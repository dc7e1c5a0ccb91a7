"""
Sync Event Log
Append-only, ordered event history per sync job.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from database.models import SyncEvent, SyncEventType
from database.repositories import SyncRepository
from utils.clock import Clock, utc_now
from utils.logging import get_logger

logger = get_logger(__name__)

EventListener = Callable[[str, SyncEvent], Awaitable[None]]


class SyncEventLog:
    """Writes events through the repository and notifies listeners."""

    def __init__(self, repository: SyncRepository, clock: Clock = utc_now):
        self.repository = repository
        self.clock = clock
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def append(self, sync_id: str, event_type: SyncEventType, message: str,
                     details: Optional[Dict[str, Any]] = None) -> SyncEvent:
        event = SyncEvent(
            timestamp=self.clock(),
            type=event_type,
            message=message,
            details=details,
        )
        await self.repository.append_event(sync_id, event)

        for listener in list(self._listeners):
            try:
                await listener(sync_id, event)
            except Exception as e:
                logger.warning("Sync event listener failed", sync_id=sync_id, error=str(e))

        return event

    async def info(self, sync_id: str, message: str, **details) -> SyncEvent:
        return await self.append(sync_id, SyncEventType.INFO, message, details or None)

    async def warning(self, sync_id: str, message: str, **details) -> SyncEvent:
        return await self.append(sync_id, SyncEventType.WARNING, message, details or None)

    async def read(self, sync_id: str) -> List[SyncEvent]:
        """Events in append order."""
        return await self.repository.list_events(sync_id)
