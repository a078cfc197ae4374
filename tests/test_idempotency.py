"""
Idempotency-Key middleware on order creation.
"""
import httpx
import pytest
from fastapi import FastAPI
from redis.exceptions import ConnectionError as RedisConnectionError

from tableorder.middleware.idempotency import IDEMPOTENCY_PREFIX, IdempotencyMiddleware


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl


class DownRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection refused")


def build_app(redis) -> tuple[FastAPI, list]:
    calls = []
    app = FastAPI()
    app.add_middleware(IdempotencyMiddleware, redis_factory=lambda: redis)

    @app.post("/orders", status_code=201)
    async def create(body: dict):
        calls.append(body)
        return [{"id": f"order-{len(calls)}", "tableIdentifier": body["tableIdentifier"]}]

    @app.post("/other")
    async def other():
        calls.append("other")
        return {"ok": True}

    return app, calls


async def post(app, path, key=None):
    headers = {"Idempotency-Key": key} if key else {}
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        return await c.post(path, json={"tableIdentifier": "T1"}, headers=headers)


@pytest.mark.asyncio
async def test_retried_create_is_replayed_not_duplicated():
    redis = FakeRedis()
    app, calls = build_app(redis)

    first = await post(app, "/orders", key="abc")
    second = await post(app, "/orders", key="abc")

    assert first.status_code == second.status_code == 201
    assert second.json() == first.json() == [{"id": "order-1", "tableIdentifier": "T1"}]
    assert second.headers["X-Idempotency-Replay"] == "true"
    assert "X-Idempotency-Replay" not in first.headers
    assert len(calls) == 1
    assert f"{IDEMPOTENCY_PREFIX}abc" in redis.store


@pytest.mark.asyncio
async def test_requests_without_key_or_on_other_paths_pass_through():
    redis = FakeRedis()
    app, calls = build_app(redis)

    await post(app, "/orders")
    await post(app, "/orders")
    await post(app, "/other", key="abc")
    await post(app, "/other", key="abc")

    assert len(calls) == 4
    assert redis.store == {}


@pytest.mark.asyncio
async def test_distinct_keys_create_distinct_records():
    app, calls = build_app(FakeRedis())
    a = await post(app, "/orders", key="a")
    b = await post(app, "/orders", key="b")
    assert a.json()[0]["id"] != b.json()[0]["id"]
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unavailable_cache_degrades_to_pass_through():
    app, calls = build_app(DownRedis())
    first = await post(app, "/orders", key="abc")
    second = await post(app, "/orders", key="abc")
    assert first.status_code == second.status_code == 201
    assert len(calls) == 2
