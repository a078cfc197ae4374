"""
Table Order Service — SSE endpoint over the Notifier

Architecture:
  - Order and archive services publish envelopes after each committed mutation
  - This endpoint subscribes per connection and streams them to EventSource
    clients, optionally filtered to one table
  - Delivery is best-effort; clients recover by re-fetching over REST
"""
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from tableorder.core.config import get_settings
from tableorder.core.notifier import Notifier, get_notifier

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


def format_event(envelope: dict) -> str:
    return f"event: {envelope['event']}\ndata: {json.dumps(envelope)}\n\n"


async def _sse_generator(notifier: Notifier, request: Request, table: str | None) -> AsyncGenerator[str, None]:
    """Subscribe to the notifier and yield SSE frames until the client leaves."""
    subscription = await notifier.subscribe()
    try:
        # Initial comment so proxies flush headers
        yield f": connected{f' to table {table}' if table else ''}\n\n"

        # Reconnect interval for the client
        yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"

        while True:
            if await request.is_disconnected():
                break

            envelope = await subscription.get(timeout=settings.SSE_KEEPALIVE_INTERVAL_SECONDS)
            if envelope is None:
                yield ": keepalive\n\n"
                continue

            if table and table not in envelope.get("tables", []):
                continue
            yield format_event(envelope)

    finally:
        await subscription.close()
        logger.debug("SSE subscriber for %s disconnected", table or "all tables")


@router.get("/stream")
async def stream_notifications(
    request: Request,
    table: str | None = Query(None, description="Only events touching this table"),
    notifier: Notifier = Depends(get_notifier),
):
    """
    SSE endpoint. Customers pass ?table=; kitchen and admin boards omit it.
    Event names are the notifier event kinds; data is the full envelope.
    """
    return StreamingResponse(
        _sse_generator(notifier, request, table),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "Connection": "keep-alive",
        },
    )
