import pytest

from database.models import (
    BatchSource,
    JobType,
    ScheduleConfig,
    ScheduleOptions,
    SyncJobStatus,
    SyncTarget,
)
from utils.exceptions import NotFoundError, SyncValidationError

from .conftest import FIXED_NOW, TENANT, make_item


def assert_nothing_persisted(services):
    assert services.sync_repository.job_count() == 0
    assert services.sync_repository.batch_count() == 0


async def test_oversized_batch_is_rejected_before_any_job_exists(services):
    item_ids = [f"p{n}" for n in range(51)]

    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_batch(TENANT, item_ids, "shopee")

    assert exc_info.value.code == "BATCH_TOO_LARGE"
    assert exc_info.value.details["max_batch_size"] == 50
    assert_nothing_persisted(services)


async def test_empty_batch_is_rejected(services):
    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_batch(TENANT, [], "shopee")

    assert exc_info.value.code == "BATCH_EMPTY"
    assert_nothing_persisted(services)


async def test_duplicate_ids_are_rejected(services):
    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_batch(TENANT, ["p1", "p2", "p1"], "shopee")

    assert exc_info.value.code == "DUPLICATE_ITEMS"
    assert exc_info.value.details == {"duplicates": ["p1"]}
    assert_nothing_persisted(services)


async def test_foreign_item_rejects_the_whole_batch(services, catalog):
    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_batch(TENANT, ["p1", "foreign", "ghost"], "shopee")

    error = exc_info.value
    assert error.code == "ITEMS_NOT_FOUND"
    assert error.status_code == 404
    assert error.details["missing_ids"] == ["foreign", "ghost"]
    assert_nothing_persisted(services)
    assert catalog.get_sync_status("p1", "shopee") is None


async def test_unsupported_target_is_rejected(services):
    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_batch(TENANT, ["p1"], "amazon")

    assert exc_info.value.code == "UNSUPPORTED_TARGET"
    assert_nothing_persisted(services)


async def test_submit_batch_persists_queued_jobs(services, catalog):
    submission = await services.dispatcher.submit_batch(TENANT, ["p1", "p2"], SyncTarget.TIKTOK)

    batch = submission.batch
    assert batch.batch_id.startswith("batch_")
    assert batch.source == BatchSource.MANUAL
    assert batch.job_ids == [job.sync_id for job in submission.jobs]
    assert [job.status for job in submission.jobs] == [SyncJobStatus.QUEUED] * 2
    assert all(job.sync_id.startswith("sync_") for job in submission.jobs)

    first_events = await services.event_log.read(submission.jobs[0].sync_id)
    assert first_events[0].message == "Starting batch sync for product: Product p1"
    assert first_events[0].details == {"batch_id": batch.batch_id, "target": "tiktok"}
    assert catalog.get_sync_status("p1", "tiktok").status == "syncing"

    await services.coordinator.join()
    status = await services.status.get_batch_status(batch.batch_id)
    assert status["status"] == "completed"


async def test_submit_single_starts_running(services, catalog):
    job = await services.dispatcher.submit_single(TENANT, "p3", "shopee")

    assert job.status == SyncJobStatus.RUNNING
    assert job.batch_id is None
    events = await services.event_log.read(job.sync_id)
    assert events[0].message == "Starting sync process..."

    await services.coordinator.join()
    stored = await services.sync_repository.get_job(job.sync_id)
    assert stored.status == SyncJobStatus.SUCCESS
    assert catalog.get_sync_status("p3", "shopee").status == "synced"


async def test_submit_single_checks_ownership(services):
    with pytest.raises(SyncValidationError) as exc_info:
        await services.dispatcher.submit_single(TENANT, "foreign", "shopee")

    assert exc_info.value.code == "ITEMS_NOT_FOUND"
    assert_nothing_persisted(services)


def make_schedule(**overrides) -> ScheduleConfig:
    fields = {
        "id": "schedule_1",
        "name": "Nightly products",
        "tenant_id": TENANT,
        "store_id": "store-1",
        "job_type": JobType.PRODUCTS,
        "cron_expression": "0 0 * * *",
        "target": SyncTarget.SHOPEE,
        "options": ScheduleOptions(batch_size=2, max_retries=1),
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    fields.update(overrides)
    return ScheduleConfig(**fields)


async def test_submit_scheduled_chunks_candidates(services, catalog):
    catalog.add_item(make_item("p4"))
    catalog.add_item(make_item("p5"))
    catalog.add_item(make_item("p6", store_id="store-2"))

    batch_ids = await services.dispatcher.submit_scheduled(make_schedule())

    batches = [await services.sync_repository.get_batch(batch_id) for batch_id in batch_ids]
    # p1, p2, p3, no-price, p4, p5 live in store-1
    assert [len(batch.job_ids) for batch in batches] == [2, 2, 2]
    assert all(batch.source == BatchSource.SCHEDULE for batch in batches)
    assert all(batch.schedule_id == "schedule_1" for batch in batches)

    job = await services.sync_repository.get_job(batches[0].job_ids[0])
    assert job.max_retries == 1
    assert job.options == {"priority": "normal", "conflict_resolution": "platform_wins"}
    await services.coordinator.join()


async def test_submit_scheduled_without_candidates(services):
    assert await services.dispatcher.submit_scheduled(make_schedule(store_id="empty-store")) == []
    assert_nothing_persisted(services)


async def test_retry_unknown_dead_letter(services):
    with pytest.raises(NotFoundError):
        await services.dispatcher.retry_dead_letter("sync_missing", TENANT)
