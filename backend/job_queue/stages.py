"""
Stage pipelines
Fixed, named stage lists per job type. Each stage is an async callable that
reads and extends the shared StageContext.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config.settings import settings
from connectors.marketplace import MarketplaceClient
from database.models import CatalogItem, JobType, SyncJob
from database.repositories import CatalogStore

TARGET_NAMES = {
    "shopee": "Shopee",
    "tiktok": "TikTok Shop",
}

PRICE_MARKUPS = {
    "shopee": Decimal("1.15"),
    "tiktok": Decimal("1.20"),
}


class StageDataError(Exception):
    """Catalog data unusable for the requested sync."""


@dataclass
class StageContext:
    job: SyncJob
    catalog: CatalogStore
    marketplace: MarketplaceClient
    timeout: float = settings.SYNC_STAGE_TIMEOUT
    item: Optional[CatalogItem] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> str:
        return self.job.target.value

    async def call(self, awaitable: Awaitable[Any]) -> Any:
        """Run an outbound marketplace call under the stage timeout."""
        return await asyncio.wait_for(awaitable, timeout=self.timeout)


StageFunc = Callable[[StageContext], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    name: str
    message: str
    run: StageFunc

    def describe(self, target: str) -> str:
        return self.message.format(target=TARGET_NAMES.get(target, target))


async def fetch_validate(ctx: StageContext):
    item = await ctx.catalog.get_item(ctx.job.item_id)
    if item is None:
        raise StageDataError(f"Product {ctx.job.item_id} is missing from the master catalog")

    if ctx.job.job_type == JobType.PRODUCTS:
        missing = [name for name in ("title", "base_price") if getattr(item, name) in (None, "")]
        if missing:
            raise StageDataError(f"Missing required fields: {', '.join(missing)}")
        if item.base_price <= 0:
            raise StageDataError("Invalid price: must be greater than zero")

    ctx.item = item
    ctx.payload = {
        "id": item.id,
        "title": item.title,
        "sku": item.sku,
        "images": list(item.images),
        "stock": item.stock,
    }


async def transform_pricing(ctx: StageContext):
    markup = PRICE_MARKUPS.get(ctx.target, Decimal("1"))
    price = (ctx.item.base_price * markup).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    ctx.payload["price"] = str(price)


async def upload(ctx: StageContext):
    result = await ctx.call(ctx.marketplace.upload_product(ctx.target, ctx.payload))
    ctx.payload["external_id"] = result.get("external_id")


async def compute_stock(ctx: StageContext):
    ctx.payload["stock"] = max(ctx.item.stock, 0)


async def push_inventory(ctx: StageContext):
    result = await ctx.call(
        ctx.marketplace.update_inventory(ctx.target, ctx.item.id, ctx.payload["stock"])
    )
    ctx.payload["external_id"] = result.get("external_id")


async def pull_orders(ctx: StageContext):
    ctx.payload["orders"] = await ctx.call(
        ctx.marketplace.fetch_orders(ctx.target, ctx.job.tenant_id, ctx.item.store_id)
    )


async def normalize_orders(ctx: StageContext):
    normalized = []
    for order in ctx.payload.get("orders", []):
        if "id" not in order:
            raise StageDataError("Invalid order payload: missing id")
        normalized.append({
            "id": str(order["id"]),
            "status": str(order.get("status", "unknown")).lower(),
            "total": str(Decimal(str(order.get("total", "0"))).quantize(Decimal("0.01"))),
        })
    ctx.payload["orders"] = normalized


PIPELINES: Dict[JobType, List[Stage]] = {
    JobType.PRODUCTS: [
        Stage("fetch_validate", "Fetching product data from master catalog...", fetch_validate),
        Stage("transform_pricing", "Applying {target} pricing rules...", transform_pricing),
        Stage("upload", "Uploading product to {target}...", upload),
    ],
    JobType.INVENTORY: [
        Stage("fetch_validate", "Fetching product data from master catalog...", fetch_validate),
        Stage("compute_stock", "Calculating available stock...", compute_stock),
        Stage("push_inventory", "Pushing inventory to {target}...", push_inventory),
    ],
    JobType.ORDERS: [
        Stage("fetch_validate", "Fetching store data from master catalog...", fetch_validate),
        Stage("pull_orders", "Pulling orders from {target}...", pull_orders),
        Stage("normalize_orders", "Normalizing order data...", normalize_orders),
    ],
}


def get_pipeline(job_type: JobType) -> List[Stage]:
    return PIPELINES[job_type]
