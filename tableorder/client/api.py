"""
Table Order Client — REST API wrapper

Thin async wrapper over the order endpoints used by the customer session and
the kitchen/admin boards. Responses are parsed into the same schemas the
server renders, so client code works with typed records.
"""
import logging
import uuid
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from tableorder.core.config import get_settings
from tableorder.schemas.order import ArchivedOrderOut, LineItem, OrderOut

settings = get_settings()
logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Base class for failures talking to the order API."""


class ApiError(ClientError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class ServerUnreachableError(ClientError):
    """Network failure or timeout before any response arrived."""

    def __init__(self, cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__("could not reach server")


def _item_body(item: LineItem | dict[str, Any]) -> dict[str, Any]:
    if isinstance(item, LineItem):
        return item.model_dump(by_alias=True)
    return item


class OrderApiClient:
    """
    Usage:
        async with OrderApiClient("http://orders:8000") as api:
            records = await api.list_active("T1")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token: str | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
            headers=headers,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "OrderApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ServerUnreachableError(exc) from exc

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and "detail" in body:
                detail = body["detail"]
            else:
                detail = response.text or response.reason_phrase
            raise ApiError(response.status_code, str(detail))
        return response.json()

    # ── Customer ──────────────────────────────────────────────────────────────

    async def create_orders(
        self,
        table_identifier: str,
        items: Sequence[LineItem | dict[str, Any]],
        idempotency_key: str | None = None,
    ) -> list[OrderOut]:
        data = await self._request(
            "POST",
            "/orders",
            json={"tableIdentifier": table_identifier, "orderItems": [_item_body(i) for i in items]},
            headers={"Idempotency-Key": idempotency_key or str(uuid.uuid4())},
        )
        return [OrderOut.model_validate(r) for r in data]

    async def list_active(self, table_identifier: str) -> list[OrderOut]:
        data = await self._request("GET", f"/orders/table/{quote(table_identifier, safe='')}/active")
        return [OrderOut.model_validate(r) for r in data]

    async def patch_order(
        self,
        order_id: str,
        order_items: Sequence[LineItem | dict[str, Any]],
        total_price: float | None = None,
        status: str | None = None,
    ) -> OrderOut:
        body: dict[str, Any] = {"orderItems": [_item_body(i) for i in order_items]}
        if total_price is not None:
            body["totalPrice"] = total_price
        if status is not None:
            body["status"] = status
        return OrderOut.model_validate(await self._request("PATCH", f"/orders/{order_id}", json=body))

    async def cancel_order(self, order_id: str) -> OrderOut:
        return await self.patch_order(order_id, [])

    # ── Staff ─────────────────────────────────────────────────────────────────

    async def list_orders(self, status: str | None = None, table_identifier: str | None = None) -> list[OrderOut]:
        params = {}
        if status:
            params["status"] = status
        if table_identifier:
            params["table"] = table_identifier
        data = await self._request("GET", "/orders", params=params)
        return [OrderOut.model_validate(r) for r in data]

    async def get_order(self, order_id: str) -> OrderOut:
        return OrderOut.model_validate(await self._request("GET", f"/orders/{order_id}"))

    async def set_status(self, order_id: str, status: str) -> OrderOut:
        data = await self._request("PATCH", f"/orders/{order_id}/status", json={"status": status})
        return OrderOut.model_validate(data)

    async def revert_status(self, order_id: str) -> OrderOut:
        return OrderOut.model_validate(await self._request("PATCH", f"/orders/{order_id}/revert-status"))

    async def set_kitchen_done(self, order_id: str, done: bool = True) -> OrderOut:
        data = await self._request("PATCH", f"/orders/{order_id}/kitchen-done", json={"kitchenDone": done})
        return OrderOut.model_validate(data)

    async def archive(self, order_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/orders/{order_id}/archive")

    async def bulk_set_status(self, order_ids: Sequence[str], status: str) -> list[OrderOut]:
        data = await self._request("PATCH", "/orders/bulk/status", json={"ids": list(order_ids), "status": status})
        return [OrderOut.model_validate(r) for r in data]

    async def bulk_revert_status(self, order_ids: Sequence[str]) -> list[OrderOut]:
        data = await self._request("PATCH", "/orders/bulk/revert-status", json={"ids": list(order_ids)})
        return [OrderOut.model_validate(r) for r in data]

    async def bulk_set_kitchen_done(self, order_ids: Sequence[str], done: bool = True) -> list[OrderOut]:
        data = await self._request(
            "PATCH", "/orders/bulk/kitchen-done", json={"ids": list(order_ids), "kitchenDone": done}
        )
        return [OrderOut.model_validate(r) for r in data]

    async def bulk_archive(self, order_ids: Sequence[str]) -> dict[str, Any]:
        return await self._request("POST", "/orders/bulk/archive", json={"ids": list(order_ids)})

    async def list_archived(self, table_identifier: str | None = None) -> list[ArchivedOrderOut]:
        params = {"table": table_identifier} if table_identifier else {}
        data = await self._request("GET", "/orders/archived", params=params)
        return [ArchivedOrderOut.model_validate(r) for r in data]
