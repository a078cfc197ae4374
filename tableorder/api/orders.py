"""
Table Order Service — Orders API

Customer routes (create, active query, patch) are open. Staff routes (status,
revert, kitchen marker, archive, bulk) run the authorize_staff placeholder
first. Static /orders/bulk/* and /orders/archived paths are declared before
the /orders/{order_id} routes so they are not captured as ids.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tableorder.core.notifier import Notifier, get_notifier
from tableorder.core.security import authorize_staff
from tableorder.db.database import get_db
from tableorder.models.order import OrderStatus
from tableorder.schemas.order import (
    ArchivedOrderOut,
    BulkIdsRequest,
    BulkKitchenDoneRequest,
    BulkStatusRequest,
    KitchenDoneRequest,
    OrderCreateRequest,
    OrderOut,
    OrderPatchRequest,
    StatusRequest,
)
from tableorder.services import archive_service, order_service

router = APIRouter(prefix="/orders", tags=["orders"])
staff = [Depends(authorize_staff)]


def _out(orders) -> list[OrderOut]:
    return [OrderOut.model_validate(o) for o in orders]


# ── Customer ──────────────────────────────────────────────────────────────────

@router.post("", response_model=list[OrderOut], status_code=status.HTTP_201_CREATED)
async def create_orders(
    payload: OrderCreateRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    One order record per line item with a positive quantity.
    Idempotency-Key replays are handled by IdempotencyMiddleware.
    """
    orders = await order_service.create_orders(db, notifier, payload.table_identifier, payload.order_items)
    return _out(orders)


@router.get("", response_model=list[OrderOut])
async def list_orders(
    status_filter: str | None = Query(None, alias="status", description="InProgress, Delivered, Paid or Cancelled"),
    table: str | None = Query(None, description="Filter by table identifier"),
    db: AsyncSession = Depends(get_db),
):
    """Every non-archived record, oldest first. Kitchen and admin boards load from here."""
    parsed = OrderStatus.parse(status_filter) if status_filter else None
    return _out(await order_service.list_orders(db, status=parsed, table_identifier=table))


@router.get("/table/{table_identifier}/active", response_model=list[OrderOut])
async def list_active_orders(table_identifier: str, db: AsyncSession = Depends(get_db)):
    return _out(await order_service.list_active_orders(db, table_identifier))


@router.get("/archived", response_model=list[ArchivedOrderOut])
async def list_archived_orders(
    table: str | None = Query(None, description="Filter by table identifier"),
    db: AsyncSession = Depends(get_db),
):
    archived = await archive_service.list_archived(db, table)
    return [ArchivedOrderOut.model_validate(a) for a in archived]


# ── Bulk (staff) ──────────────────────────────────────────────────────────────

@router.patch("/bulk/status", response_model=list[OrderOut], dependencies=staff)
async def bulk_set_status(
    payload: BulkStatusRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return _out(await order_service.bulk_set_status(db, notifier, payload.ids, payload.status))


@router.patch("/bulk/revert-status", response_model=list[OrderOut], dependencies=staff)
async def bulk_revert_status(
    payload: BulkIdsRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return _out(await order_service.bulk_revert_status(db, notifier, payload.ids))


@router.patch("/bulk/kitchen-done", response_model=list[OrderOut], dependencies=staff)
async def bulk_set_kitchen_done(
    payload: BulkKitchenDoneRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return _out(await order_service.bulk_set_kitchen_done(db, notifier, payload.ids, payload.kitchen_done))


@router.post("/bulk/archive", dependencies=staff)
async def bulk_archive(
    payload: BulkIdsRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    orders = await archive_service.archive_orders(db, notifier, payload.ids)
    return {"message": "orders archived", "ids": [o.id for o in orders]}


# ── Single record ─────────────────────────────────────────────────────────────

@router.get("/{order_id}", response_model=OrderOut)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    return OrderOut.model_validate(await order_service.get_order(db, order_id))


@router.patch("/{order_id}", response_model=OrderOut)
async def patch_order(
    order_id: str,
    payload: OrderPatchRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Empty orderItems cancels the record; a single item replaces its line item."""
    order = await order_service.patch_order(
        db, notifier, order_id, payload.order_items, total_price=payload.total_price, status=payload.status
    )
    return OrderOut.model_validate(order)


@router.patch("/{order_id}/status", response_model=OrderOut, dependencies=staff)
async def set_status(
    order_id: str,
    payload: StatusRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return OrderOut.model_validate(await order_service.set_status(db, notifier, order_id, payload.status))


@router.patch("/{order_id}/revert-status", response_model=OrderOut, dependencies=staff)
async def revert_status(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return OrderOut.model_validate(await order_service.revert_status(db, notifier, order_id))


@router.patch("/{order_id}/kitchen-done", response_model=OrderOut, dependencies=staff)
async def set_kitchen_done(
    order_id: str,
    payload: KitchenDoneRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return OrderOut.model_validate(
        await order_service.set_kitchen_done(db, notifier, order_id, payload.kitchen_done)
    )


@router.delete("/{order_id}/archive", dependencies=staff)
async def archive_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    order = await archive_service.archive_order(db, notifier, order_id)
    return {"message": "order archived", "id": order.id, "tableIdentifier": order.table_identifier}
