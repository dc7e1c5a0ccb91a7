"""
Database package initialization
"""

from .models import *
from .repositories import (
    CatalogStore,
    InMemoryCatalogStore,
    InMemoryScheduleRepository,
    InMemorySyncRepository,
    ScheduleRepository,
    SyncRepository,
)

__all__ = [
    "CatalogStore",
    "InMemoryCatalogStore",
    "InMemoryScheduleRepository",
    "InMemorySyncRepository",
    "ScheduleRepository",
    "SyncRepository",
]
