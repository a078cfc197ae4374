"""
Table Order Service — Pydantic Schemas

Wire format is camelCase; snake_case and the legacy field names
(tableNumber, price) are accepted on input.
"""
from datetime import date, datetime, timezone

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tableorder.models.order import OrderStatus

_camel = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(BaseModel):
    model_config = _camel

    name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., ge=0)
    unit_price: float = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("unitPrice", "unit_price", "price"),
        serialization_alias="unitPrice",
    )


class NewLineItem(LineItem):
    # Non-positive quantities are filtered by the service, not rejected here.
    quantity: int


class OrderCreateRequest(BaseModel):
    model_config = _camel

    table_identifier: str = Field(
        ...,
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("tableIdentifier", "table_identifier", "tableNumber"),
        examples=["T1"],
    )
    order_items: list[NewLineItem] = Field(
        ..., validation_alias=AliasChoices("orderItems", "order_items", "items")
    )


class OrderPatchRequest(BaseModel):
    """Empty orderItems cancels the record; one item replaces its line item."""
    model_config = _camel

    order_items: list[LineItem] = Field(
        ..., max_length=1, validation_alias=AliasChoices("orderItems", "order_items")
    )
    total_price: float | None = Field(None, ge=0)
    status: str | None = None


class StatusRequest(BaseModel):
    status: str


class KitchenDoneRequest(BaseModel):
    model_config = _camel

    kitchen_done: bool


class BulkIdsRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=200)


class BulkStatusRequest(BulkIdsRequest):
    status: str


class BulkKitchenDoneRequest(BulkIdsRequest):
    model_config = _camel

    kitchen_done: bool


class OrderOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    table_identifier: str
    line_item: LineItem
    total_price: float
    status: OrderStatus
    status_history: list[OrderStatus] = Field(default_factory=list)
    kitchen_done: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; every stored timestamp is UTC
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ArchivedOrderOut(OrderOut):
    archived_at: datetime

    @field_validator("archived_at", mode="after")
    @classmethod
    def _archived_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ArchivedOrderSnapshot(OrderOut):
    """Validation applied to a record before it is copied into the archive."""

    @model_validator(mode="after")
    def _check_terminal_and_items(self) -> "ArchivedOrderSnapshot":
        if self.status not in (OrderStatus.PAID, OrderStatus.CANCELLED):
            raise ValueError("only paid or cancelled orders can be archived")
        if self.status != OrderStatus.CANCELLED and self.line_item.quantity <= 0:
            raise ValueError("archived order must contain an item with quantity > 0 unless cancelled")
        return self


class DailyItemTotalOut(BaseModel):
    name: str
    quantity: int


class DailyAnalyticsOut(BaseModel):
    day: date
    items: list[DailyItemTotalOut]

