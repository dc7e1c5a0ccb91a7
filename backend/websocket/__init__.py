"""
WebSocket package for real-time sync event push
"""

from .connection_manager import ConnectionManager, WebSocketMessage

__all__ = ["ConnectionManager", "WebSocketMessage"]
