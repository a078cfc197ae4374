"""
Notifier backends and the SSE endpoint generator.
"""
import json
from types import SimpleNamespace

import pytest

from conftest import create
from tableorder.api.notifications import _sse_generator, format_event
from tableorder.core.notifier import (
    EventKind,
    MemoryNotifier,
    RedisNotifier,
    build_envelope,
    build_notifier,
)


class BrokenNotifier(MemoryNotifier):
    async def _send(self, envelope):
        raise ConnectionError("broker down")


class FakeRequest:
    """Stands in for starlette's Request: connected for `polls` checks."""

    def __init__(self, polls: int):
        self.polls = polls

    async def is_disconnected(self) -> bool:
        self.polls -= 1
        return self.polls < 0


class FakePubSub:
    def __init__(self, messages):
        self.messages = list(messages)
        self.closed = False

    async def subscribe(self, channel):
        self.channel = channel

    async def unsubscribe(self, channel):
        pass

    async def aclose(self):
        self.closed = True

    async def get_message(self, ignore_subscribe_messages=True, timeout=None):
        return self.messages.pop(0) if self.messages else None


class FakeRedis:
    def __init__(self, pubsub=None):
        self.published = []
        self._pubsub = pubsub or FakePubSub([])

    async def publish(self, channel, data):
        self.published.append((channel, data))
        return 1

    async def ping(self):
        return True

    def pubsub(self):
        return self._pubsub


@pytest.mark.asyncio
async def test_memory_notifier_fans_out_to_every_subscriber():
    notifier = MemoryNotifier()
    first, second = await notifier.subscribe(), await notifier.subscribe()

    assert await notifier.publish(EventKind.ORDER_CREATED, {"id": "a"}, ["T1"]) is True
    for subscription in (first, second):
        envelope = await subscription.get(timeout=0.1)
        assert envelope == {"event": "order-created", "tables": ["T1"], "data": {"id": "a"}}

    await first.close()
    await notifier.publish(EventKind.ORDER_UPDATED, {"id": "a"}, ["T1"])
    assert await first.get(timeout=0.01) is None
    assert (await second.get(timeout=0.1))["event"] == "order-updated"


@pytest.mark.asyncio
async def test_full_subscriber_queue_drops_events():
    notifier = MemoryNotifier(queue_size=1)
    subscription = await notifier.subscribe()
    await notifier.publish(EventKind.ORDER_CREATED, {"id": "a"})
    await notifier.publish(EventKind.ORDER_CREATED, {"id": "b"})
    assert (await subscription.get(timeout=0.1))["data"]["id"] == "a"
    assert await subscription.get(timeout=0.01) is None


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed_and_reported():
    assert await BrokenNotifier().publish(EventKind.ORDER_CREATED, {"id": "a"}) is False


@pytest.mark.asyncio
async def test_order_creation_survives_a_broken_notifier(client):
    from tableorder.main import app

    app.state.notifier = BrokenNotifier()
    created = await create(client, "T1", ("Momo", 2, 5))
    assert created[0]["status"] == "InProgress"


def test_envelope_deduplicates_and_sorts_tables():
    envelope = build_envelope(EventKind.ORDERS_BULK_ARCHIVED, {"ids": []}, ["T2", "T1", "T2"])
    assert envelope["tables"] == ["T1", "T2"]


@pytest.mark.asyncio
async def test_redis_notifier_publishes_json_on_channel():
    redis = FakeRedis()
    notifier = RedisNotifier(redis, "orders:events")
    await notifier.publish(EventKind.ORDER_ARCHIVED, {"id": "a"}, ["T1"])
    channel, data = redis.published[0]
    assert channel == "orders:events"
    assert json.loads(data)["event"] == "order-archived"


@pytest.mark.asyncio
async def test_redis_subscription_skips_malformed_messages():
    pubsub = FakePubSub([
        {"type": "message", "data": "not json"},
        {"type": "message", "data": json.dumps({"event": "order-created", "tables": [], "data": {}})},
    ])
    notifier = RedisNotifier(FakeRedis(pubsub), "orders:events")
    subscription = await notifier.subscribe()
    assert await subscription.get(timeout=0.01) is None
    assert (await subscription.get(timeout=0.01))["event"] == "order-created"
    await subscription.close()
    assert pubsub.closed


def test_build_notifier_selects_backend():
    memory = build_notifier(SimpleNamespace(NOTIFIER_BACKEND="memory", NOTIFIER_QUEUE_SIZE=8))
    assert isinstance(memory, MemoryNotifier)
    redis = build_notifier(SimpleNamespace(NOTIFIER_BACKEND="redis", NOTIFIER_CHANNEL="c"), FakeRedis())
    assert isinstance(redis, RedisNotifier)
    with pytest.raises(ValueError):
        build_notifier(SimpleNamespace(NOTIFIER_BACKEND="redis", NOTIFIER_CHANNEL="c"))
    with pytest.raises(ValueError):
        build_notifier(SimpleNamespace(NOTIFIER_BACKEND="kafka"))


# ─── SSE ───────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_sse_stream_filters_by_table_and_closes_subscription():
    notifier = MemoryNotifier()
    stream = _sse_generator(notifier, FakeRequest(polls=2), "T1")

    assert (await stream.__anext__()).startswith(": connected to table T1")
    assert (await stream.__anext__()).startswith("retry: ")
    assert len(notifier._subscriptions) == 1

    await notifier.publish(EventKind.ORDER_CREATED, {"id": "other"}, ["T2"])
    await notifier.publish(EventKind.ORDER_CREATED, {"id": "mine"}, ["T1"])

    frame = await stream.__anext__()
    assert frame.startswith("event: order-created\n")
    assert json.loads(frame.split("data: ", 1)[1])["data"]["id"] == "mine"

    # client gone on the next poll
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert notifier._subscriptions == set()


def test_format_event_is_a_complete_sse_frame():
    frame = format_event(build_envelope(EventKind.ORDER_UPDATED, {"id": "a"}, ["T1"]))
    assert frame.endswith("\n\n")
    assert frame.splitlines()[0] == "event: order-updated"
