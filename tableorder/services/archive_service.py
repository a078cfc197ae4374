"""
Table Order Service — Archive

One-way move of terminal (Paid / Cancelled) records out of the active store.
The validated copy is added before the delete and both run in one database
transaction, so a failure leaves the record where it was. The notification is
published only after the commit.
"""
import logging
from typing import Sequence

import pydantic
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tableorder.core.exceptions import InvalidStateError, ValidationError
from tableorder.core.notifier import EventKind, Notifier
from tableorder.models.order import TERMINAL_STATUSES, ArchivedOrder, Order, OrderStatus
from tableorder.schemas.order import ArchivedOrderSnapshot
from tableorder.services import analytics_service
from tableorder.services.order_service import commit, execute, get_order, get_orders

logger = logging.getLogger(__name__)


def _snapshot(order: Order) -> ArchivedOrder:
    if OrderStatus(order.status) not in TERMINAL_STATUSES:
        raise InvalidStateError("only paid or cancelled orders can be archived", order.id)
    try:
        ArchivedOrderSnapshot.model_validate(order)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"archive validation failed: {exc.errors()[0]['msg']}", order.id) from exc

    return ArchivedOrder(
        id=order.id,
        table_identifier=order.table_identifier,
        item_name=order.item_name,
        quantity=order.quantity,
        unit_price=order.unit_price,
        total_price=order.total_price,
        status=order.status,
        status_history=list(order.status_history or []),
        kitchen_done=order.kitchen_done,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


async def _move(db: AsyncSession, orders: Sequence[Order]) -> None:
    copies = [_snapshot(order) for order in orders]  # validate everything before touching the store
    for order, copy in zip(orders, copies):
        db.add(copy)
        if order.status == OrderStatus.PAID:
            await analytics_service.record_sale(db, order)
        await db.delete(order)
    await commit(db)


async def archive_order(db: AsyncSession, notifier: Notifier, order_id: str) -> Order:
    order = await get_order(db, order_id)
    await _move(db, [order])
    logger.info("Order %s archived (%s)", order.id, order.status.value)
    await notifier.publish(
        EventKind.ORDER_ARCHIVED,
        {"id": order.id, "tableIdentifier": order.table_identifier, "status": order.status.value},
        [order.table_identifier],
    )
    return order


async def archive_orders(db: AsyncSession, notifier: Notifier, order_ids: Sequence[str]) -> list[Order]:
    orders = await get_orders(db, order_ids)
    await _move(db, orders)
    logger.info("Bulk archived %d order(s)", len(orders))
    await notifier.publish(
        EventKind.ORDERS_BULK_ARCHIVED,
        {"ids": [o.id for o in orders], "tableIdentifiers": sorted({o.table_identifier for o in orders})},
        [o.table_identifier for o in orders],
    )
    return orders


async def list_archived(db: AsyncSession, table_identifier: str | None = None) -> list[ArchivedOrder]:
    query = select(ArchivedOrder).order_by(ArchivedOrder.archived_at.asc(), ArchivedOrder.id.asc())
    if table_identifier:
        query = query.where(ArchivedOrder.table_identifier == table_identifier)
    result = await execute(db, query)
    return list(result.scalars().all())
