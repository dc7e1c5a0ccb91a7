import asyncio
from dataclasses import dataclass

from config.services import build_services
from connectors.marketplace import MarketplaceError, SimulatedMarketplaceClient
from database.models import JobType, SyncEventType, SyncJobStatus

from .conftest import TENANT

TERMINAL_EVENTS = (SyncEventType.SUCCESS, SyncEventType.ERROR)


def rate_limited():
    return MarketplaceError("Too many requests", status_code=429)


async def run_batch(services, item_ids, target="shopee", **kwargs):
    submission = await services.dispatcher.submit_batch(TENANT, item_ids, target, **kwargs)
    await services.coordinator.join()
    return submission


async def events_of(services, sync_id):
    return await services.event_log.read(sync_id)


async def test_mixed_batch_has_one_terminal_event_per_job(services, marketplace):
    marketplace.always_fail("p2", MarketplaceError("Invalid category id", status_code=400))

    submission = await run_batch(services, ["p1", "p2", "p3"])

    status = await services.status.get_batch_status(submission.batch.batch_id)
    assert status["status"] == "mixed"
    assert (status["completed"], status["failed"], status["percentage"]) == (2, 1, 100)
    assert status["error_summary"] == {"total_errors": 1, "error_types": {"INVALID_DATA": 1}}

    for job in submission.jobs:
        events = await events_of(services, job.sync_id)
        terminal = [event for event in events if event.type in TERMINAL_EVENTS]
        assert len(terminal) == 1
        assert events[-1].type in TERMINAL_EVENTS

    assert len(marketplace.calls_for("p2")) == 1


async def test_successful_job_event_sequence(services):
    submission = await run_batch(services, ["p1"])
    sync_id = submission.jobs[0].sync_id

    events = await events_of(services, sync_id)
    assert [event.message for event in events] == [
        "Starting batch sync for product: Product p1",
        "Processing p1...",
        "Fetching product data from master catalog...",
        "Applying Shopee pricing rules...",
        "Uploading product to Shopee...",
        "✓ Product successfully synced to Shopee",
    ]
    assert [event.details["stage"] for event in events[2:5]] == [
        "fetch_validate", "transform_pricing", "upload",
    ]
    assert events[-1].details == {"external_id": "shopee_p1", "price": "11.50"}


async def test_tiktok_pricing_and_catalog_status(services, catalog):
    submission = await run_batch(services, ["p1"], target="tiktok")

    events = await events_of(services, submission.jobs[0].sync_id)
    assert events[-1].message == "✓ Product successfully synced to TikTok Shop"
    assert events[-1].details["price"] == "12.00"
    assert catalog.get_sync_status("p1", "tiktok").status == "synced"


async def test_transient_failure_is_retried(services, marketplace):
    marketplace.fail_with("p1", rate_limited())

    submission = await run_batch(services, ["p1"])
    sync_id = submission.jobs[0].sync_id

    job = await services.sync_repository.get_job(sync_id)
    assert job.status == SyncJobStatus.SUCCESS
    assert len(marketplace.calls_for("p1")) == 2

    warnings = [e for e in await events_of(services, sync_id) if e.type == SyncEventType.WARNING]
    assert len(warnings) == 1
    assert warnings[0].message == "upload failed (RATE_LIMIT); retrying in 0 seconds (attempt 2/4)"
    assert warnings[0].details["error_kind"] == "RATE_LIMIT"


async def test_exhausted_retries_go_to_dead_letter(services, marketplace, catalog):
    marketplace.always_fail("p1", rate_limited())

    submission = await run_batch(services, ["p1"])
    sync_id = submission.jobs[0].sync_id

    # one attempt plus three retries
    assert len(marketplace.calls_for("p1")) == 4
    events = await events_of(services, sync_id)
    assert len([e for e in events if e.type == SyncEventType.WARNING]) == 3
    assert events[-1].message == "✗ Sync failed: RATE_LIMIT"
    assert events[-1].details["attempts"] == 4
    assert events[-1].details["stage"] == "upload"

    job = await services.sync_repository.get_job(sync_id)
    assert job.status == SyncJobStatus.ERROR
    assert job.retryable

    [entry] = services.coordinator.list_dead_letters(TENANT)
    assert entry["sync_id"] == sync_id
    assert entry["error_kind"] == "RATE_LIMIT"
    assert services.coordinator.list_dead_letters("someone-else") == []

    mapping = catalog.get_sync_status("p1", "shopee")
    assert mapping.status == "error"
    assert mapping.error == "429: Too many requests"


async def test_permission_errors_are_not_retried(services, marketplace):
    marketplace.always_fail("p1", MarketplaceError("Forbidden", status_code=403))

    submission = await run_batch(services, ["p1"])

    assert len(marketplace.calls_for("p1")) == 1
    job = await services.sync_repository.get_job(submission.jobs[0].sync_id)
    assert job.error_kind == "PERMISSION_DENIED"
    assert services.coordinator.list_dead_letters() == []


async def test_stage_timeout_is_classified(services, marketplace):
    marketplace.latency = 0.2
    services.coordinator.stage_timeout = 0.05

    submission = await run_batch(services, ["p1"], max_retries=0)

    job = await services.sync_repository.get_job(submission.jobs[0].sync_id)
    assert job.status == SyncJobStatus.ERROR
    assert job.error_kind == "TIMEOUT"
    assert len(services.coordinator.list_dead_letters()) == 1


async def test_missing_price_fails_validation(services, marketplace):
    submission = await run_batch(services, ["no-price"])

    job = await services.sync_repository.get_job(submission.jobs[0].sync_id)
    assert job.error_kind == "INVALID_DATA"
    assert job.error_message == "Missing required fields: base_price"
    assert marketplace.calls == []


async def test_cancel_before_run_stops_every_job(services, marketplace):
    submission = await services.dispatcher.submit_batch(TENANT, ["p1", "p2", "p3"], "shopee")
    await services.coordinator.cancel_batch(submission.batch.batch_id, TENANT)
    await services.coordinator.join()

    status = await services.status.get_batch_status(submission.batch.batch_id)
    assert status["status"] == "failed"
    assert status["cancelled"]
    assert status["error_summary"]["error_types"] == {"CANCELLED": 3}
    assert marketplace.calls == []

    for job in await services.sync_repository.get_jobs(submission.batch.job_ids):
        assert job.error_message == "Sync cancelled"
        assert job.cancelled
        events = await events_of(services, job.sync_id)
        assert events[-1].details == {"cancelled": True}


async def test_cancel_after_completion_changes_nothing(services):
    submission = await run_batch(services, ["p1", "p2"])

    batch = await services.coordinator.cancel_batch(submission.batch.batch_id)

    assert batch.cancelled
    status = await services.status.get_batch_status(submission.batch.batch_id)
    assert status["status"] == "completed"
    assert status["error_summary"] is None


async def test_concurrent_runners_write_one_terminal_event(services):
    job = await services.dispatcher.submit_single(TENANT, "p1", "shopee")

    await asyncio.gather(
        services.coordinator.run_job(job.sync_id),
        services.coordinator.run_job(job.sync_id),
    )
    await services.coordinator.join()

    events = await events_of(services, job.sync_id)
    assert len([event for event in events if event.type in TERMINAL_EVENTS]) == 1


@dataclass
class OverlapTrackingMarketplace(SimulatedMarketplaceClient):
    in_flight: int = 0
    max_in_flight: int = 0

    async def upload_product(self, target, payload):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return await super().upload_product(target, payload)
        finally:
            self.in_flight -= 1


async def test_same_item_jobs_never_overlap(catalog, clock, fast_retries):
    marketplace = OverlapTrackingMarketplace(latency=0.01)
    services = build_services(catalog=catalog, marketplace=marketplace, clock=clock,
                              retry_policy=fast_retries, inter_job_delay=0)

    first = await services.dispatcher.submit_single(TENANT, "p1", "shopee")
    second = await services.dispatcher.submit_single(TENANT, "p1", "shopee")
    await services.coordinator.join()

    assert marketplace.max_in_flight == 1
    for sync_id in (first.sync_id, second.sync_id):
        job = await services.sync_repository.get_job(sync_id)
        assert job.status == SyncJobStatus.SUCCESS


async def test_inventory_pipeline(services, marketplace):
    submission = await run_batch(services, ["p1"], target="tiktok", job_type=JobType.INVENTORY)

    events = await events_of(services, submission.jobs[0].sync_id)
    assert "Pushing inventory to TikTok Shop..." in [event.message for event in events]
    assert events[-1].message == "✓ Inventory successfully updated on TikTok Shop"
    assert marketplace.calls_for("p1") == [("update_inventory", "tiktok", "p1")]


async def test_orders_pipeline(services, marketplace):
    marketplace.orders = [{"id": 1001, "status": "PAID", "total": 12.5}]

    job = await services.dispatcher.submit_single(TENANT, "p1", "shopee", job_type=JobType.ORDERS)
    await services.coordinator.join()

    stored = await services.sync_repository.get_job(job.sync_id)
    assert stored.status == SyncJobStatus.SUCCESS
    assert marketplace.calls_for("store-1") == [("fetch_orders", "shopee", "store-1")]
    events = await events_of(services, job.sync_id)
    assert events[-1].message == "✓ Orders successfully imported from Shopee"


async def test_malformed_orders_fail_as_invalid_data(services, marketplace):
    marketplace.orders = [{"status": "PAID"}]

    job = await services.dispatcher.submit_single(TENANT, "p1", "shopee", job_type=JobType.ORDERS)
    await services.coordinator.join()

    stored = await services.sync_repository.get_job(job.sync_id)
    assert stored.error_kind == "INVALID_DATA"


async def test_dead_letter_retry_resubmits_the_item(services, marketplace):
    marketplace.fail_with("p1", *(rate_limited() for _ in range(4)))
    submission = await run_batch(services, ["p1"])
    failed_id = submission.jobs[0].sync_id
    assert services.coordinator.get_dead_letter(failed_id) is not None

    retry = await services.dispatcher.retry_dead_letter(failed_id, TENANT)
    await services.coordinator.join()

    assert retry.options == {"retry_of": failed_id}
    stored = await services.sync_repository.get_job(retry.sync_id)
    assert stored.status == SyncJobStatus.SUCCESS
    assert services.coordinator.get_dead_letter(failed_id) is None
    events = await events_of(services, retry.sync_id)
    assert events[0].details == {"target": "shopee", "retry_of": failed_id}


async def test_server_errors_are_retried(services, marketplace):
    marketplace.fail_with("p1", MarketplaceError("Service Unavailable", status_code=503))

    submission = await run_batch(services, ["p1"])

    job = await services.sync_repository.get_job(submission.jobs[0].sync_id)
    assert job.status == SyncJobStatus.SUCCESS
    assert len(marketplace.calls_for("p1")) == 2


async def test_cancel_mid_batch_lets_running_job_finish(services, marketplace):
    marketplace.latency = 0.05
    submission = await services.dispatcher.submit_batch(TENANT, ["p1", "p2", "p3"], "shopee")

    while not marketplace.calls:
        await asyncio.sleep(0.005)
    await services.coordinator.cancel_batch(submission.batch.batch_id, TENANT)
    await services.coordinator.join()

    status = await services.status.get_batch_status(submission.batch.batch_id)
    assert status["status"] == "mixed"
    assert (status["completed"], status["failed"], status["percentage"]) == (1, 2, 100)
    assert status["error_summary"]["error_types"] == {"CANCELLED": 2}
    assert marketplace.calls == [("upload_product", "shopee", "p1")]

    first, *rest = await services.sync_repository.get_jobs(submission.batch.job_ids)
    assert first.status == SyncJobStatus.SUCCESS
    assert all(job.cancelled for job in rest)


async def test_dead_letters_are_capped(services, marketplace):
    services.coordinator.dead_letter_limit = 2
    for item_id in ("p1", "p2", "p3"):
        marketplace.always_fail(item_id, rate_limited())

    await run_batch(services, ["p1", "p2", "p3"])

    assert [entry["item_id"] for entry in services.coordinator.list_dead_letters()] == ["p2", "p3"]


async def test_old_dead_letters_are_cleaned_up(services, marketplace, clock):
    marketplace.always_fail("p1", rate_limited())
    await run_batch(services, ["p1"])

    assert services.coordinator.cleanup_dead_letters() == 0
    clock.advance(days=8)
    assert services.coordinator.cleanup_dead_letters() == 1
    assert services.coordinator.list_dead_letters() == []
