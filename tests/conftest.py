"""
Shared fixtures: the real app over ASGITransport, a throwaway SQLite store
and the in-process notifier.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings are read once, on first import of the app; configure before that.
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="tableorder-"), "orders.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["NOTIFIER_BACKEND"] = "memory"
os.environ["IDEMPOTENCY_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"

import httpx
import pytest
import pytest_asyncio

from tableorder.client.api import OrderApiClient
from tableorder.core.notifier import MemoryNotifier
from tableorder.db.database import Base, async_session, engine
from tableorder.main import app
from tableorder.schemas.order import OrderOut

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    async with async_session() as session:
        yield session


@pytest.fixture
def notifier():
    return MemoryNotifier(queue_size=64)


@pytest_asyncio.fixture
async def client(db_engine, notifier):
    app.state.notifier = notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def api(db_engine, notifier):
    """OrderApiClient wired straight to the app."""
    app.state.notifier = notifier
    async with OrderApiClient("http://test", transport=httpx.ASGITransport(app=app)) as c:
        yield c


async def create(client: httpx.AsyncClient, table: str = "T1", *items: tuple[str, int, float]) -> list[dict]:
    """POST /orders helper; items are (name, quantity, unitPrice)."""
    r = await client.post(
        "/orders",
        json={
            "tableIdentifier": table,
            "orderItems": [{"name": n, "quantity": q, "unitPrice": p} for n, q, p in items],
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


async def drain(subscription, timeout: float = 0.05) -> list[dict]:
    """Collect every envelope currently queued on a notifier subscription."""
    events = []
    while True:
        envelope = await subscription.get(timeout=timeout)
        if envelope is None:
            return events
        events.append(envelope)


def wire(order_id, name="Momo", quantity=3, unit_price=5.0, status="InProgress", history=(), minutes=0, table="T1"):
    """A record as the API renders it, for mocked responses and pushed events."""
    created = (T0 + timedelta(minutes=minutes)).isoformat()
    return {
        "id": order_id,
        "tableIdentifier": table,
        "lineItem": {"name": name, "quantity": quantity, "unitPrice": unit_price},
        "totalPrice": quantity * unit_price,
        "status": status,
        "statusHistory": list(history),
        "kitchenDone": False,
        "createdAt": created,
        "updatedAt": created,
    }


def record(*args, **kwargs) -> OrderOut:
    return OrderOut.model_validate(wire(*args, **kwargs))
