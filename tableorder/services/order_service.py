"""
Table Order Service — order creation, queries and mutations

Every function reads then writes the store without cross-request locking
(last write wins). Notifications go out only after a successful commit.
"""
import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tableorder.core.config import get_settings
from tableorder.core.exceptions import InvalidStateError, NotFoundError, StoreError, ValidationError
from tableorder.core.notifier import EventKind, Notifier
from tableorder.models.order import ArchivedOrder, Order, OrderStatus
from tableorder.schemas.order import LineItem, NewLineItem, OrderOut
from tableorder.services import lifecycle

settings = get_settings()
logger = logging.getLogger(__name__)


async def commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Order store commit failed")
        raise StoreError("order store unavailable") from exc


async def execute(db: AsyncSession, statement):
    try:
        return await db.execute(statement)
    except SQLAlchemyError as exc:
        logger.exception("Order store query failed")
        raise StoreError("order store unavailable") from exc


async def get_order(db: AsyncSession, order_id: str) -> Order:
    result = await execute(db, select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("order not found", order_id)
    return order


async def get_orders(db: AsyncSession, order_ids: Sequence[str]) -> list[Order]:
    """Fetch several records in the requested order; any unknown id fails the lot."""
    ids = list(dict.fromkeys(order_ids))
    result = await execute(db, select(Order).where(Order.id.in_(ids)))
    found = {o.id: o for o in result.scalars().all()}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"orders not found: {', '.join(missing)}", missing[0])
    return [found[i] for i in ids]


async def get_archived(db: AsyncSession, order_id: str) -> ArchivedOrder | None:
    result = await execute(db, select(ArchivedOrder).where(ArchivedOrder.id == order_id))
    return result.scalar_one_or_none()


def _wire(order: Order) -> dict:
    return OrderOut.model_validate(order).to_wire()


# ── Create ────────────────────────────────────────────────────────────────────

async def create_orders(
    db: AsyncSession,
    notifier: Notifier,
    table_identifier: str,
    items: Sequence[NewLineItem],
) -> list[Order]:
    """Materialize one OrderRecord per line item with a positive quantity."""
    table_identifier = table_identifier.strip()
    if not table_identifier:
        raise ValidationError("tableIdentifier is required")

    valid = [item for item in items if item.quantity > 0]
    if not valid:
        raise ValidationError("no valid items")

    orders = []
    for item in valid:
        order = Order(
            table_identifier=table_identifier,
            item_name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.quantity * item.unit_price,
            status=OrderStatus.IN_PROGRESS,
            status_history=[],
            kitchen_done=False,
        )
        db.add(order)
        orders.append(order)
    await commit(db)

    logger.info("Table %s: created %d order record(s)", table_identifier, len(orders))
    for order in orders:
        await notifier.publish(EventKind.ORDER_CREATED, _wire(order), [order.table_identifier])
    return orders


# ── Queries ───────────────────────────────────────────────────────────────────

async def list_active_orders(db: AsyncSession, table_identifier: str) -> list[Order]:
    """Non-paid records for a table, cancelled-but-unarchived included, oldest first."""
    result = await execute(
        db,
        select(Order)
        .where(Order.table_identifier == table_identifier)
        .where(Order.status != OrderStatus.PAID)
        .order_by(Order.created_at.asc(), Order.id.asc()),
    )
    return list(result.scalars().all())


async def list_orders(
    db: AsyncSession,
    status: OrderStatus | None = None,
    table_identifier: str | None = None,
) -> list[Order]:
    """All non-archived records, oldest first."""
    query = select(Order).order_by(Order.created_at.asc(), Order.id.asc())
    if status is not None:
        query = query.where(Order.status == status)
    if table_identifier:
        query = query.where(Order.table_identifier == table_identifier)
    result = await execute(db, query)
    return list(result.scalars().all())


# ── Patch ─────────────────────────────────────────────────────────────────────

def _resolve_total(order_id: str, item: LineItem, supplied: float | None) -> float:
    computed = item.quantity * item.unit_price
    if supplied is None:
        return computed
    if settings.TRUST_CLIENT_TOTALS:
        return supplied
    if abs(supplied - computed) > 1e-9:
        logger.warning(
            "Order %s: client totalPrice %.2f does not match %d x %.2f, using %.2f",
            order_id, supplied, item.quantity, item.unit_price, computed,
        )
    return computed


async def patch_order(
    db: AsyncSession,
    notifier: Notifier,
    order_id: str,
    order_items: Sequence[LineItem],
    total_price: float | None = None,
    status: str | None = None,
) -> Order:
    """Cancel (empty order_items) or replace the record's line item."""
    try:
        order = await get_order(db, order_id)
    except NotFoundError:
        if await get_archived(db, order_id) is not None:
            raise InvalidStateError("cannot modify paid or archived order", order_id)
        raise
    current = OrderStatus(order.status)
    if current == OrderStatus.PAID:
        raise InvalidStateError("cannot modify paid or archived order", order_id)

    target = OrderStatus.parse(status) if status is not None else None
    if len(order_items) > 1:
        raise ValidationError("an order record holds exactly one line item", order_id)

    if not order_items:
        changed = lifecycle.cancel(order)
    else:
        if current == OrderStatus.CANCELLED:
            raise InvalidStateError("cancelled order can only be reverted", order_id)
        item = order_items[0]
        lifecycle.replace_line_item(
            order,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=_resolve_total(order_id, item, total_price),
            status=target,
        )
        changed = True

    order.touch()
    await commit(db)
    if changed:
        logger.info("Order %s patched: status=%s quantity=%d", order.id, order.status.value, order.quantity)
    await notifier.publish(EventKind.ORDER_UPDATED, _wire(order), [order.table_identifier])
    return order


# ── Status transitions ────────────────────────────────────────────────────────

async def set_status(db: AsyncSession, notifier: Notifier, order_id: str, status: str) -> Order:
    """Unrestricted direct status set; same status is a silent no-op."""
    order = await get_order(db, order_id)
    target = OrderStatus.parse(status)
    if not lifecycle.change_status(order, target):
        return order
    order.touch()
    await commit(db)
    logger.info("Order %s: %s -> %s", order.id, order.status_history[-1], target.value)
    await notifier.publish(EventKind.ORDER_STATUS_UPDATED, _wire(order), [order.table_identifier])
    return order


async def revert_status(db: AsyncSession, notifier: Notifier, order_id: str) -> Order:
    order = await get_order(db, order_id)
    lifecycle.revert(order)
    order.touch()
    await commit(db)
    logger.info("Order %s reverted to %s", order.id, order.status.value)
    await notifier.publish(EventKind.ORDER_STATUS_UPDATED, _wire(order), [order.table_identifier])
    return order


async def set_kitchen_done(db: AsyncSession, notifier: Notifier, order_id: str, done: bool) -> Order:
    order = await get_order(db, order_id)
    if order.kitchen_done == done:
        return order
    order.kitchen_done = done
    order.touch()
    await commit(db)
    await notifier.publish(EventKind.ORDER_UPDATED, _wire(order), [order.table_identifier])
    return order


# ── Bulk operations (all-or-nothing, one notification) ────────────────────────

async def _publish_bulk(notifier: Notifier, changed: list[Order]) -> None:
    if not changed:
        return
    await notifier.publish(
        EventKind.ORDERS_BULK_TOGGLED,
        {"orders": [_wire(o) for o in changed]},
        [o.table_identifier for o in changed],
    )


async def bulk_set_status(db: AsyncSession, notifier: Notifier, order_ids: Sequence[str], status: str) -> list[Order]:
    target = OrderStatus.parse(status)
    orders = await get_orders(db, order_ids)
    changed = [o for o in orders if lifecycle.change_status(o, target)]
    for order in changed:
        order.touch()
    await commit(db)
    logger.info("Bulk status %s applied to %d of %d order(s)", target.value, len(changed), len(orders))
    await _publish_bulk(notifier, changed)
    return orders


async def bulk_revert_status(db: AsyncSession, notifier: Notifier, order_ids: Sequence[str]) -> list[Order]:
    orders = await get_orders(db, order_ids)
    without_history = [o.id for o in orders if not o.status_history]
    if without_history:
        raise InvalidStateError("no history to revert", without_history[0])
    for order in orders:
        lifecycle.revert(order)
        order.touch()
    await commit(db)
    await _publish_bulk(notifier, orders)
    return orders


async def bulk_set_kitchen_done(
    db: AsyncSession, notifier: Notifier, order_ids: Sequence[str], done: bool
) -> list[Order]:
    orders = await get_orders(db, order_ids)
    changed = [o for o in orders if o.kitchen_done != done]
    for order in changed:
        order.kitchen_done = done
        order.touch()
    await commit(db)
    await _publish_bulk(notifier, changed)
    return orders
