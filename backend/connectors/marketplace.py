"""
Marketplace Client
Interface the sync stages call to talk to a marketplace, plus an in-process
simulation used in development and tests.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple


class MarketplaceError(Exception):
    """Error reported by a marketplace API."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.status_code}: {self.message}"
        return self.message


class MarketplaceClient(ABC):
    """Outbound calls the stage pipeline needs from a marketplace."""

    @abstractmethod
    async def upload_product(self, target: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update a listing. Returns the marketplace reference."""

    @abstractmethod
    async def update_inventory(self, target: str, item_id: str, stock: int) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def fetch_orders(self, target: str, tenant_id: str,
                           store_id: Optional[str]) -> List[Dict[str, Any]]:
        ...


@dataclass
class SimulatedMarketplaceClient(MarketplaceClient):
    """
    Marketplace stand-in that always succeeds unless told otherwise.

    `fail_with` queues one-shot errors for an item (consumed in order, one
    per call); `always_fail` makes every call for an item raise.
    """
    latency: float = 0.0
    calls: List[Tuple[str, str, str]] = field(default_factory=list)
    orders: List[Dict[str, Any]] = field(default_factory=list)
    _queued_failures: Dict[str, Deque[Exception]] = field(default_factory=dict)
    _permanent_failures: Dict[str, Exception] = field(default_factory=dict)

    def fail_with(self, item_id: str, *errors: Exception):
        self._queued_failures.setdefault(item_id, deque()).extend(errors)

    def always_fail(self, item_id: str, error: Exception):
        self._permanent_failures[item_id] = error

    def calls_for(self, item_id: str) -> List[Tuple[str, str, str]]:
        return [call for call in self.calls if call[2] == item_id]

    async def _call(self, operation: str, target: str, item_id: str):
        self.calls.append((operation, target, item_id))
        if self.latency:
            await asyncio.sleep(self.latency)

        if item_id in self._permanent_failures:
            raise self._permanent_failures[item_id]
        queued = self._queued_failures.get(item_id)
        if queued:
            raise queued.popleft()

    async def upload_product(self, target: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        item_id = payload["id"]
        await self._call("upload_product", target, item_id)
        return {"external_id": f"{target}_{item_id}", "status": "active"}

    async def update_inventory(self, target: str, item_id: str, stock: int) -> Dict[str, Any]:
        await self._call("update_inventory", target, item_id)
        return {"external_id": f"{target}_{item_id}", "stock": stock}

    async def fetch_orders(self, target: str, tenant_id: str,
                           store_id: Optional[str]) -> List[Dict[str, Any]]:
        await self._call("fetch_orders", target, store_id or tenant_id)
        return [dict(order) for order in self.orders]
