"""
Table Order Service — Daily analytics API
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tableorder.db.database import get_db
from tableorder.schemas.order import DailyAnalyticsOut, DailyItemTotalOut
from tableorder.services import analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/daily", response_model=DailyAnalyticsOut)
async def daily_analytics(
    day: date = Query(..., description="Business date, YYYY-MM-DD"),
    db: AsyncSession = Depends(get_db),
):
    """Quantities sold per item on one day, counted when paid orders are archived."""
    rows = await analytics_service.daily_totals(db, day)
    return DailyAnalyticsOut(
        day=day,
        items=[DailyItemTotalOut(name=r.item_name, quantity=r.quantity) for r in rows],
    )
