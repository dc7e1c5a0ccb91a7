"""
WebSocket Connection Manager
Pushes appended sync events to connected clients of the same tenant.
Polling the status endpoints remains the primary contract.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Set

from fastapi import WebSocket
from pydantic import BaseModel, Field

from database.models import SyncEvent
from database.repositories import SyncRepository

logger = logging.getLogger(__name__)


class WebSocketMessage(BaseModel):
    """WebSocket message model"""
    type: str
    data: Dict[str, Any]
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ConnectionManager:
    """Manages WebSocket connections grouped by tenant"""

    def __init__(self, repository: SyncRepository):
        self.repository = repository
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.connection_metadata: Dict[WebSocket, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, tenant_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()
        self.active_connections.setdefault(tenant_id, set()).add(websocket)
        self.connection_metadata[websocket] = {
            "tenant_id": tenant_id,
            "connected_at": datetime.now(timezone.utc),
        }
        logger.info(f"📡 New sync WebSocket connection for tenant {tenant_id}")

    async def disconnect(self, websocket: WebSocket):
        """Handle WebSocket disconnection"""
        info = self.connection_metadata.pop(websocket, {})
        tenant_id = info.get("tenant_id")
        connections = self.active_connections.get(tenant_id)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self.active_connections[tenant_id]
        logger.info(f"📡 Sync WebSocket connection for tenant {tenant_id} disconnected")

    async def broadcast_to_tenant(self, message: WebSocketMessage, tenant_id: str):
        """Broadcast message to all connections of one tenant"""
        for websocket in self.active_connections.get(tenant_id, set()).copy():
            try:
                await websocket.send_text(message.model_dump_json())
            except Exception as e:
                logger.error(f"Error broadcasting to tenant {tenant_id}: {e}")
                await self.disconnect(websocket)

    async def publish_sync_event(self, sync_id: str, event: SyncEvent):
        """Sync event log listener."""
        if not self.active_connections:
            return

        job = await self.repository.get_job(sync_id)
        if job is None:
            return

        message = WebSocketMessage(
            type="sync_event",
            data={
                "sync_id": sync_id,
                "batch_id": job.batch_id,
                "item_id": job.item_id,
                "event": event.model_dump(mode="json"),
            },
        )
        await self.broadcast_to_tenant(message, job.tenant_id)

    def get_connection_count(self) -> Dict[str, int]:
        return {tenant_id: len(connections) for tenant_id, connections in self.active_connections.items()}
