"""
Table Order Service — Notifier (best-effort change broadcast)

Architecture:
  - Services publish an envelope {"event", "tables", "data"} after every
    committed mutation.
  - RedisNotifier fans out through a Redis pub/sub channel so every API
    process sees every event; MemoryNotifier does the same inside one process.
  - No persistence, no ordering and no delivery guarantee. Clients must be
    able to reach a correct state through REST re-fetch alone.

The notifier is created in the app lifespan and injected through
`get_notifier`; it is never a module global.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Iterable

import redis.asyncio as aioredis
from fastapi import Request

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ORDER_CREATED = "order-created"
    ORDER_UPDATED = "order-updated"
    ORDER_STATUS_UPDATED = "order-status-updated"
    ORDERS_BULK_TOGGLED = "orders-bulk-toggled"
    ORDER_ARCHIVED = "order-archived"
    ORDERS_BULK_ARCHIVED = "orders-bulk-archived"


def build_envelope(kind: EventKind, payload: dict[str, Any], tables: Iterable[str]) -> dict[str, Any]:
    return {"event": kind.value, "tables": sorted(set(tables)), "data": payload}


class Subscription:
    """One consumer's view of the event stream. Close it on teardown."""

    async def get(self, timeout: float) -> dict[str, Any] | None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class Notifier:
    """publish/subscribe capability with an explicit open/close lifecycle."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def ping(self) -> bool:
        return True

    async def subscribe(self) -> Subscription:
        raise NotImplementedError

    async def _send(self, envelope: dict[str, Any]) -> None:
        raise NotImplementedError

    async def publish(self, kind: EventKind, payload: dict[str, Any], tables: Iterable[str] = ()) -> bool:
        """Broadcast one event. Failures are logged and never raised."""
        envelope = build_envelope(kind, payload, tables)
        try:
            await self._send(envelope)
        except Exception as exc:
            # Notification failures MUST NOT affect order processing
            logger.warning("Notifier publish of %s failed: %s", kind.value, exc)
            return False
        logger.debug("Published %s for tables %s", kind.value, envelope["tables"])
        return True


# ─── In-process backend ───────────────────────────────────────────────────────

class _MemorySubscription(Subscription):
    def __init__(self, notifier: "MemoryNotifier", maxsize: int):
        self._notifier = notifier
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

    async def get(self, timeout: float) -> dict[str, Any] | None:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        self._notifier._subscriptions.discard(self)


class MemoryNotifier(Notifier):
    """Fan-out to in-process subscribers. A full subscriber queue drops the event."""

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscriptions: set[_MemorySubscription] = set()

    async def close(self) -> None:
        self._subscriptions.clear()

    async def subscribe(self) -> Subscription:
        subscription = _MemorySubscription(self, self._queue_size)
        self._subscriptions.add(subscription)
        return subscription

    async def _send(self, envelope: dict[str, Any]) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription.queue.put_nowait(envelope)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for a slow subscriber", envelope["event"])


# ─── Redis backend ────────────────────────────────────────────────────────────

class _RedisSubscription(Subscription):
    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel

    async def get(self, timeout: float) -> dict[str, Any] | None:
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if not message or message["type"] != "message":
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed notifier message on %s", self._channel)
            return None

    async def close(self) -> None:
        await self._pubsub.unsubscribe(self._channel)
        await self._pubsub.aclose()


class RedisNotifier(Notifier):
    def __init__(self, redis: aioredis.Redis, channel: str):
        self._redis = redis
        self._channel = channel

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def subscribe(self) -> Subscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        return _RedisSubscription(pubsub, self._channel)

    async def _send(self, envelope: dict[str, Any]) -> None:
        await self._redis.publish(self._channel, json.dumps(envelope))


def build_notifier(settings, redis: aioredis.Redis | None = None) -> Notifier:
    if settings.NOTIFIER_BACKEND == "memory":
        return MemoryNotifier(queue_size=settings.NOTIFIER_QUEUE_SIZE)
    if settings.NOTIFIER_BACKEND == "redis":
        if redis is None:
            raise ValueError("RedisNotifier requires a Redis client")
        return RedisNotifier(redis, settings.NOTIFIER_CHANNEL)
    raise ValueError(f"Unknown NOTIFIER_BACKEND '{settings.NOTIFIER_BACKEND}'")


def get_notifier(request: Request) -> Notifier:
    """FastAPI dependency: the notifier opened by the app lifespan."""
    return request.app.state.notifier
