"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from config.services import build_services
from connectors.marketplace import SimulatedMarketplaceClient
from database.models import CatalogItem
from database.repositories import InMemoryCatalogStore
from job_queue.retry_policy import RetryPolicy

# A Monday, far enough ahead that armed timers never fire during a test run
FIXED_NOW = datetime(2030, 1, 7, 10, 15, tzinfo=timezone.utc)

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class FakeClock:
    """Callable clock pinned to a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_item(item_id: str, tenant_id: str = TENANT, **overrides) -> CatalogItem:
    fields = {
        "id": item_id,
        "tenant_id": tenant_id,
        "store_id": "store-1",
        "title": f"Product {item_id}",
        "sku": f"SKU-{item_id}",
        "base_price": Decimal("10.00"),
        "stock": 5,
        "images": [f"https://cdn.example.com/{item_id}.jpg"],
    }
    fields.update(overrides)
    return CatalogItem(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog(clock):
    return InMemoryCatalogStore(
        [
            make_item("p1"),
            make_item("p2"),
            make_item("p3"),
            make_item("no-price", base_price=None),
            make_item("foreign", tenant_id=OTHER_TENANT, store_id="store-9"),
        ],
        clock=clock,
    )


@pytest.fixture
def marketplace():
    return SimulatedMarketplaceClient()


@pytest.fixture
def fast_retries():
    return RetryPolicy(max_attempts=10, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def services(catalog, marketplace, clock, fast_retries):
    return build_services(
        catalog=catalog,
        marketplace=marketplace,
        clock=clock,
        retry_policy=fast_retries,
        inter_job_delay=0,
    )
