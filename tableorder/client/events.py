"""
Table Order Client — live event stream

Reads GET /notifications/stream as server-sent events and yields one
OrderEvent per envelope. Comments (keepalives) and retry hints are skipped.
Events are hints only: consumers must stay correct by re-fetching over REST.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from tableorder.client.api import ApiError, OrderApiClient, ServerUnreachableError

logger = logging.getLogger(__name__)


@dataclass
class OrderEvent:
    kind: str
    data: dict[str, Any]
    tables: list[str] = field(default_factory=list)

    def touches(self, table_identifier: str) -> bool:
        return not self.tables or table_identifier in self.tables


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[OrderEvent]:
    """Turn raw SSE lines into OrderEvents. Malformed frames are logged and dropped."""
    event_name = None
    data_lines: list[str] = []

    async for line in lines:
        if line == "":
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    envelope = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping malformed event frame: %.80s", raw)
                else:
                    yield OrderEvent(
                        kind=envelope.get("event") or event_name or "message",
                        data=envelope.get("data", {}),
                        tables=list(envelope.get("tables", [])),
                    )
            event_name = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)


class EventSubscription:
    """
    Usage:
        async with EventSubscription(api, table="T1") as events:
            async for event in events:
                ...
    Leaving the block closes the HTTP stream.
    """

    def __init__(self, api: OrderApiClient, table: str | None = None) -> None:
        self._api = api
        self._table = table
        self._context = None
        self._response: httpx.Response | None = None

    async def __aenter__(self) -> "EventSubscription":
        params = {"table": self._table} if self._table else {}
        self._context = self._api.http.stream("GET", "/notifications/stream", params=params, timeout=None)
        try:
            self._response = await self._context.__aenter__()
        except httpx.TransportError as exc:
            self._context = None
            raise ServerUnreachableError(exc) from exc
        if not self._response.is_success:
            status_code = self._response.status_code
            await self.close()
            raise ApiError(status_code, "event stream refused")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._context is not None:
            context, self._context = self._context, None
            await context.__aexit__(None, None, None)
            self._response = None

    def __aiter__(self) -> AsyncIterator[OrderEvent]:
        if self._response is None:
            raise RuntimeError("EventSubscription is not open")
        return parse_sse(self._response.aiter_lines())
