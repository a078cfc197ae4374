"""
Client side of the live event stream.
"""
import json

import httpx
import pytest
import respx

from tableorder.client.api import ApiError, OrderApiClient, ServerUnreachableError
from tableorder.client.events import EventSubscription, OrderEvent, parse_sse

BASE_URL = "http://orders.test"


async def lines_of(text: str):
    for line in text.split("\n"):
        yield line


def frame(kind: str, data: dict, tables: list[str]) -> str:
    envelope = {"event": kind, "tables": tables, "data": data}
    return f"event: {kind}\ndata: {json.dumps(envelope)}\n\n"


STREAM = (
    ": connected to table T1\n\n"
    "retry: 3000\n\n"
    + frame("order-created", {"id": "a"}, ["T1"])
    + ": keepalive\n\n"
    + "event: order-updated\ndata: {not json\n\n"
    + frame("orders-bulk-archived", {"ids": ["a", "b"]}, ["T1", "T2"])
)


@pytest.mark.asyncio
async def test_parse_sse_skips_comments_retry_hints_and_malformed_frames():
    events = [e async for e in parse_sse(lines_of(STREAM))]
    assert events == [
        OrderEvent("order-created", {"id": "a"}, ["T1"]),
        OrderEvent("orders-bulk-archived", {"ids": ["a", "b"]}, ["T1", "T2"]),
    ]


def test_event_without_tables_touches_every_table():
    assert OrderEvent("order-updated", {}).touches("T9")
    assert not OrderEvent("order-updated", {}, ["T1"]).touches("T9")


@pytest.mark.asyncio
@respx.mock
async def test_subscription_reads_events_for_a_table():
    route = respx.get(f"{BASE_URL}/notifications/stream").mock(
        return_value=httpx.Response(200, text=STREAM, headers={"Content-Type": "text/event-stream"})
    )

    async with OrderApiClient(BASE_URL) as api:
        async with EventSubscription(api, table="T1") as events:
            kinds = [e.kind async for e in events]

    assert kinds == ["order-created", "orders-bulk-archived"]
    assert route.calls.last.request.url.params["table"] == "T1"


@pytest.mark.asyncio
@respx.mock
async def test_refused_stream_raises_api_error():
    respx.get(f"{BASE_URL}/notifications/stream").mock(return_value=httpx.Response(503))

    async with OrderApiClient(BASE_URL) as api:
        with pytest.raises(ApiError) as excinfo:
            async with EventSubscription(api):
                pass

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
@respx.mock
async def test_unreachable_stream_raises_server_unreachable():
    respx.get(f"{BASE_URL}/notifications/stream").mock(side_effect=httpx.ConnectError("refused"))

    async with OrderApiClient(BASE_URL) as api:
        with pytest.raises(ServerUnreachableError):
            async with EventSubscription(api):
                pass


def test_iterating_a_closed_subscription_is_an_error():
    with pytest.raises(RuntimeError):
        aiter(EventSubscription(api=None))
