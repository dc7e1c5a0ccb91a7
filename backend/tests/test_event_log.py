from database.models import SyncEventType
from database.repositories import InMemorySyncRepository
from job_queue.event_log import SyncEventLog


async def test_events_read_back_in_append_order(clock):
    log = SyncEventLog(InMemorySyncRepository(), clock=clock)
    messages = [f"step {n}" for n in range(6)]

    for message in messages:
        await log.info("sync_1", message)
        clock.advance(seconds=1)

    events = await log.read("sync_1")
    assert [event.message for event in events] == messages
    assert [event.timestamp for event in events] == sorted(event.timestamp for event in events)


async def test_event_histories_are_per_job(clock):
    log = SyncEventLog(InMemorySyncRepository(), clock=clock)
    await log.info("sync_a", "first")
    await log.warning("sync_b", "other", stage="upload")
    await log.append("sync_a", SyncEventType.SUCCESS, "done", {"external_id": "x"})

    assert [event.type for event in await log.read("sync_a")] == [SyncEventType.INFO, SyncEventType.SUCCESS]
    other = await log.read("sync_b")
    assert len(other) == 1
    assert other[0].details == {"stage": "upload"}
    assert await log.read("sync_missing") == []


async def test_read_returns_copies(clock):
    log = SyncEventLog(InMemorySyncRepository(), clock=clock)
    await log.info("sync_1", "original")

    events = await log.read("sync_1")
    events[0].message = "tampered"
    events.clear()

    assert [event.message for event in await log.read("sync_1")] == ["original"]


async def test_listeners_are_notified_and_failures_are_contained(clock):
    log = SyncEventLog(InMemorySyncRepository(), clock=clock)
    received = []

    async def broken(sync_id, event):
        raise RuntimeError("listener down")

    async def recorder(sync_id, event):
        received.append((sync_id, event.message))

    log.subscribe(broken)
    log.subscribe(recorder)
    await log.info("sync_1", "hello")

    assert received == [("sync_1", "hello")]
    assert len(await log.read("sync_1")) == 1

    log.unsubscribe(recorder)
    await log.info("sync_1", "again")
    assert received == [("sync_1", "hello")]
