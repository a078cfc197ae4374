"""
Table Order Client — Kitchen and admin boards

Each board is a rebuildable projection of GET /orders. Pushed events patch
the projection by id; a REST re-fetch replaces it wholesale and is the
authority on load and after any failed action.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from tableorder.client.api import ClientError, OrderApiClient
from tableorder.client.events import OrderEvent
from tableorder.core.exceptions import InvalidStateError
from tableorder.models.order import OrderStatus
from tableorder.schemas.order import OrderOut

logger = logging.getLogger(__name__)

# least finished first
STATUS_PRIORITY = (
    OrderStatus.IN_PROGRESS,
    OrderStatus.DELIVERED,
    OrderStatus.PAID,
    OrderStatus.CANCELLED,
)

RECORD_EVENTS = {"order-created", "order-updated", "order-status-updated"}


class BulkActionRefused(InvalidStateError):
    """A table-wide action whose precondition does not hold for every record."""


def aggregate_status(statuses: Iterable[OrderStatus]) -> OrderStatus:
    present = set(statuses)
    for status in STATUS_PRIORITY:
        if status in present:
            return status
    return OrderStatus.CANCELLED


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class TableGroup:
    table_identifier: str
    orders: list[OrderOut] = field(default_factory=list)

    @property
    def status(self) -> OrderStatus:
        return aggregate_status(o.status for o in self.orders)

    @property
    def live_orders(self) -> list[OrderOut]:
        return [o for o in self.orders if o.status != OrderStatus.CANCELLED]

    @property
    def total_price(self) -> float:
        return sum(o.total_price for o in self.orders)

    def _all_live(self, status: OrderStatus) -> bool:
        live = self.live_orders
        return bool(live) and all(o.status == status for o in live)

    @property
    def can_mark_delivered(self) -> bool:
        return self._all_live(OrderStatus.IN_PROGRESS)

    @property
    def can_mark_paid(self) -> bool:
        return self._all_live(OrderStatus.DELIVERED)

    @property
    def can_revert_all(self) -> bool:
        live = self.live_orders
        return (
            bool(live)
            and len({o.status for o in live}) == 1
            and all(o.status_history for o in live)
        )

    @property
    def can_archive_all(self) -> bool:
        live = self.live_orders
        return bool(self.orders) and all(o.status == OrderStatus.PAID for o in live)


def group_by_table(orders: Iterable[OrderOut]) -> list[TableGroup]:
    groups: dict[str, TableGroup] = {}
    for order in sorted(orders, key=lambda o: (_as_utc(o.created_at), o.id)):
        groups.setdefault(order.table_identifier, TableGroup(order.table_identifier)).orders.append(order)
    return [groups[t] for t in sorted(groups)]


class OrderBoard:
    def __init__(self, api: OrderApiClient) -> None:
        self.api = api
        self.orders: dict[str, OrderOut] = {}

    async def refresh(self) -> None:
        records = await self.api.list_orders()
        self.orders = {r.id: r for r in records}

    def groups(self) -> list[TableGroup]:
        return group_by_table(self.orders.values())

    def group(self, table_identifier: str) -> TableGroup:
        orders = [o for o in self.orders.values() if o.table_identifier == table_identifier]
        return TableGroup(table_identifier, sorted(orders, key=lambda o: (_as_utc(o.created_at), o.id)))

    def upsert(self, record: OrderOut) -> bool:
        """Apply a record unless the board already holds a newer version."""
        current = self.orders.get(record.id)
        if current is not None and _as_utc(current.updated_at) > _as_utc(record.updated_at):
            logger.debug("Ignoring stale update for order %s", record.id)
            return False
        self.orders[record.id] = record
        return True

    def apply_event(self, event: OrderEvent) -> bool:
        """Patch the projection from a pushed event. Returns whether anything changed."""
        if event.kind in RECORD_EVENTS:
            return self.upsert(OrderOut.model_validate(event.data))
        if event.kind == "orders-bulk-toggled":
            results = [self.upsert(OrderOut.model_validate(r)) for r in event.data.get("orders", [])]
            return any(results)
        if event.kind == "order-archived":
            return self.orders.pop(event.data.get("id"), None) is not None
        if event.kind == "orders-bulk-archived":
            removed = [self.orders.pop(i, None) for i in event.data.get("ids", [])]
            return any(r is not None for r in removed)
        logger.debug("Unhandled event kind %s", event.kind)
        return False

    def _apply(self, records: Sequence[OrderOut]) -> None:
        for record in records:
            self.orders[record.id] = record

    def _forget(self, order_ids: Iterable[str]) -> None:
        for order_id in order_ids:
            self.orders.pop(order_id, None)

    async def _run(self, action: str, call):
        """Await a REST action; on failure reload the board before re-raising."""
        try:
            return await call
        except ClientError as exc:
            logger.warning("%s failed (%s), reloading board", action, exc)
            try:
                await self.refresh()
            except ClientError as refresh_exc:
                logger.warning("Board reload failed: %s", refresh_exc)
            raise


class AdminBoard(OrderBoard):
    """Per-record and per-table status, revert and archive actions."""

    # ── Per record ────────────────────────────────────────────────────────────

    async def set_status(self, order_id: str, status: OrderStatus) -> OrderOut:
        record = await self._run(f"set status {order_id}", self.api.set_status(order_id, status.value))
        self._apply([record])
        return record

    async def revert(self, order_id: str) -> OrderOut:
        record = await self._run(f"revert {order_id}", self.api.revert_status(order_id))
        self._apply([record])
        return record

    async def archive(self, order_id: str) -> None:
        await self._run(f"archive {order_id}", self.api.archive(order_id))
        self._forget([order_id])

    # ── Per table ─────────────────────────────────────────────────────────────

    def _require(self, group: TableGroup, allowed: bool, action: str) -> None:
        if not allowed:
            raise BulkActionRefused(
                f"{action} refused for table {group.table_identifier}: statuses are mixed, act per order"
            )

    async def mark_table_delivered(self, table_identifier: str) -> list[OrderOut]:
        group = self.group(table_identifier)
        self._require(group, group.can_mark_delivered, "mark delivered")
        ids = [o.id for o in group.live_orders]
        records = await self._run(
            f"mark {table_identifier} delivered", self.api.bulk_set_status(ids, OrderStatus.DELIVERED.value)
        )
        self._apply(records)
        return records

    async def mark_table_paid(self, table_identifier: str) -> list[OrderOut]:
        group = self.group(table_identifier)
        self._require(group, group.can_mark_paid, "mark paid")
        ids = [o.id for o in group.live_orders]
        records = await self._run(f"mark {table_identifier} paid", self.api.bulk_set_status(ids, OrderStatus.PAID.value))
        self._apply(records)
        return records

    async def revert_table(self, table_identifier: str) -> list[OrderOut]:
        group = self.group(table_identifier)
        self._require(group, group.can_revert_all, "revert all")
        ids = [o.id for o in group.live_orders]
        records = await self._run(f"revert {table_identifier}", self.api.bulk_revert_status(ids))
        self._apply(records)
        return records

    async def archive_table(self, table_identifier: str) -> list[str]:
        group = self.group(table_identifier)
        self._require(group, group.can_archive_all, "archive all")
        ids = [o.id for o in group.orders]
        await self._run(f"archive {table_identifier}", self.api.bulk_archive(ids))
        self._forget(ids)
        return ids


class KitchenBoard(OrderBoard):
    """In-progress tickets the kitchen still has to finish, plus delivered history."""

    def pending(self) -> list[OrderOut]:
        return sorted(
            (o for o in self.orders.values() if o.status == OrderStatus.IN_PROGRESS and not o.kitchen_done),
            key=lambda o: (_as_utc(o.created_at), o.id),
        )

    def history(self) -> list[OrderOut]:
        return sorted(
            (o for o in self.orders.values() if o.status == OrderStatus.DELIVERED),
            key=lambda o: _as_utc(o.updated_at),
            reverse=True,
        )

    async def mark_done(self, order_id: str, done: bool = True) -> OrderOut:
        record = await self._run(f"kitchen done {order_id}", self.api.set_kitchen_done(order_id, done))
        self._apply([record])
        return record

    async def mark_delivered(self, order_id: str) -> OrderOut:
        record = await self._run(f"deliver {order_id}", self.api.set_status(order_id, OrderStatus.DELIVERED.value))
        self._apply([record])
        return record
