import json

from .conftest import OTHER_TENANT, TENANT


class FakeWebSocket:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text: str):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


async def test_events_are_pushed_to_the_job_tenant(services):
    manager = services.connection_manager
    mine, theirs = FakeWebSocket(), FakeWebSocket()
    await manager.connect(mine, TENANT)
    await manager.connect(theirs, OTHER_TENANT)

    job = await services.dispatcher.submit_single(TENANT, "p1", "shopee")
    await services.coordinator.join()

    assert mine.accepted
    assert theirs.sent == []
    messages = [message for message in mine.sent if message["data"]["sync_id"] == job.sync_id]
    assert messages[0]["type"] == "sync_event"
    assert messages[0]["data"]["event"]["message"] == "Starting sync process..."
    assert messages[-1]["data"]["event"]["type"] == "success"


async def test_broken_connection_is_dropped(services):
    manager = services.connection_manager
    await manager.connect(FakeWebSocket(broken=True), TENANT)

    job = await services.dispatcher.submit_single(TENANT, "p1", "shopee")
    await services.coordinator.join()

    assert manager.get_connection_count() == {}
    stored = await services.sync_repository.get_job(job.sync_id)
    assert stored.status.value == "success"
