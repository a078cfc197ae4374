"""
Table Order Service — Order DB models

[TRANSACTIONAL DATA] orders — active order records, one line item each.
[HISTORICAL DATA]    archived_orders — terminal records moved out of the active store.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tableorder.core.exceptions import ValidationError
from tableorder.db.database import Base


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class OrderStatus(str, PyEnum):
    IN_PROGRESS = "InProgress"
    DELIVERED = "Delivered"
    PAID = "Paid"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, raw: "str | OrderStatus") -> "OrderStatus":
        """Accept canonical values plus legacy spellings ("In progress", "cancelled")."""
        if isinstance(raw, cls):
            return raw
        normalized = str(raw).replace(" ", "").replace("_", "").lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        raise ValidationError("invalid status")


TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELLED})

order_status_enum = Enum(
    OrderStatus,
    name="order_status",
    values_callable=lambda members: [m.value for m in members],
)


class OrderColumns:
    """Columns shared by active and archived records (field-for-field copy)."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    table_identifier: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        order_status_enum, default=OrderStatus.IN_PROGRESS, nullable=False
    )
    status_history: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    kitchen_done: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def line_item(self) -> dict:
        return {"name": self.item_name, "quantity": self.quantity, "unit_price": self.unit_price}

    def touch(self) -> None:
        self.updated_at = utcnow()


class Order(OrderColumns, Base):
    """
    [TRANSACTIONAL DATA] — single source of truth for live orders.
    Every record holds exactly one menu line item.
    """
    __tablename__ = "orders"

    def __repr__(self) -> str:
        return f"<Order id={self.id} table={self.table_identifier} status={self.status}>"


class ArchivedOrder(OrderColumns, Base):
    """
    [HISTORICAL DATA] — copy of a Paid or Cancelled order. No un-archive.
    """
    __tablename__ = "archived_orders"

    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class DailyItemTotal(Base):
    """
    [ANALYTICS DATA] — quantity sold per menu item per business day.
    Filled when Paid orders are archived.
    """
    __tablename__ = "daily_item_totals"
    __table_args__ = (UniqueConstraint("business_date", "item_name", name="uq_daily_item"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
