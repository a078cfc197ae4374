"""
Table Order Service — daily item analytics
"""
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tableorder.models.order import DailyItemTotal, Order
from tableorder.services.order_service import execute


async def record_sale(db: AsyncSession, order: Order) -> None:
    """Add a paid record's quantity to its business day. Caller commits."""
    business_date = order.created_at.date()
    result = await execute(
        db,
        select(DailyItemTotal).where(
            DailyItemTotal.business_date == business_date,
            DailyItemTotal.item_name == order.item_name,
        ),
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = DailyItemTotal(business_date=business_date, item_name=order.item_name, quantity=0)
        db.add(row)
    row.quantity = row.quantity + order.quantity


async def daily_totals(db: AsyncSession, day: date) -> list[DailyItemTotal]:
    result = await execute(
        db,
        select(DailyItemTotal)
        .where(DailyItemTotal.business_date == day)
        .order_by(DailyItemTotal.item_name.asc()),
    )
    return list(result.scalars().all())
