"""
Routers package for API endpoints
"""

from . import scheduling, sync

__all__ = ["scheduling", "sync"]
