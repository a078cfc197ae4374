"""
Table Order Client — Customer order session

Holds two views of one table's order:
  - active_orders: the last canonical snapshot from GET /orders/table/{t}/active
  - entries: what the customer sees, confirmed entries (one per live record,
    id == record id) plus unconfirmed local additions

Local edits only touch `entries`. `confirm()` turns the difference into
create requests (additions) and patch requests (everything else), runs them
concurrently, then re-fetches and reconciles with clear_unconfirmed=True.
That re-fetch is the only consistency checkpoint: failed requests are
reported, never rolled back or retried.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Sequence

from tableorder.client.api import ClientError, OrderApiClient
from tableorder.client.events import OrderEvent
from tableorder.core.exceptions import NotFoundError
from tableorder.models.order import OrderStatus
from tableorder.schemas.order import LineItem, OrderOut

logger = logging.getLogger(__name__)


@dataclass
class OrderEntry:
    id: str
    name: str
    unit_price: float
    quantity: int
    confirmed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @classmethod
    def from_record(cls, record: OrderOut) -> "OrderEntry":
        return cls(
            id=record.id,
            name=record.line_item.name,
            unit_price=record.line_item.unit_price,
            quantity=record.line_item.quantity,
            confirmed=True,
            timestamp=record.created_at,
        )

    @property
    def total_price(self) -> float:
        return self.quantity * self.unit_price


@dataclass
class PlannedPatch:
    order_id: str
    order_items: list[LineItem]
    total_price: float
    status: OrderStatus | None = None

    @property
    def is_cancellation(self) -> bool:
        return not self.order_items


@dataclass
class ConfirmFailure:
    action: str  # "create <name>" or "patch <order id>"
    error: BaseException


@dataclass
class ConfirmResult:
    created: list[OrderOut] = field(default_factory=list)
    patched: list[OrderOut] = field(default_factory=list)
    failures: list[ConfirmFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def reconcile(
    canonical: Sequence[OrderOut],
    entries: Sequence[OrderEntry],
    clear_unconfirmed: bool = False,
) -> list[OrderEntry]:
    """
    Merge a canonical snapshot into the local entry list.

    Every record, Cancelled ones at quantity 0 included, yields a confirmed
    entry carrying the server's values, replacing any local confirmed entry
    with the same id. Confirmed entries whose record is gone are dropped.
    Unconfirmed entries are kept after the confirmed ones unless
    `clear_unconfirmed`.
    """
    records = sorted(canonical, key=lambda r: (r.created_at, r.id))
    merged = [OrderEntry.from_record(r) for r in records]
    if clear_unconfirmed:
        return merged

    known = {r.id for r in records}
    merged.extend(replace(e) for e in entries if not e.confirmed and e.id not in known)
    return merged


def _quantities_by_name(entries: Sequence[OrderEntry]) -> dict[str, int]:
    totals: dict[str, int] = defaultdict(int)
    for entry in entries:
        totals[entry.name] += entry.quantity
    return totals


class CustomerOrderSession:
    """
    Usage:
        session = CustomerOrderSession(api, "T1")
        await session.load()
        session.increase_item("Momo", 5.0)
        result = await session.confirm()
    """

    def __init__(self, api: OrderApiClient, table_identifier: str) -> None:
        self.api = api
        self.table_identifier = table_identifier
        self.entries: list[OrderEntry] = []
        self.active_orders: list[OrderOut] = []

    # ── Snapshot handling ─────────────────────────────────────────────────────

    def set_initial_active_orders(self, records: Sequence[OrderOut], clear_unconfirmed: bool = False) -> None:
        self.active_orders = sorted(records, key=lambda r: (r.created_at, r.id))
        self.entries = reconcile(self.active_orders, self.entries, clear_unconfirmed)

    def reset(self) -> None:
        self.entries = []
        self.active_orders = []

    async def load(self) -> None:
        """Initial load. Any failure resets local state before propagating."""
        try:
            records = await self.api.list_active(self.table_identifier)
        except ClientError:
            logger.warning("Initial load for table %s failed, resetting session", self.table_identifier)
            self.reset()
            raise
        self.set_initial_active_orders(records)

    async def refresh(self, clear_unconfirmed: bool = False) -> None:
        records = await self.api.list_active(self.table_identifier)
        self.set_initial_active_orders(records, clear_unconfirmed=clear_unconfirmed)

    async def handle_event(self, event: OrderEvent) -> bool:
        """
        Re-fetch when a pushed event concerns this table.

        Unconfirmed additions survive the re-fetch. Pending edits to confirmed
        entries (a decrease, a removal) are replaced by the server's values.
        """
        if not event.touches(self.table_identifier):
            return False
        await self.refresh()
        return True

    # ── Local edits ───────────────────────────────────────────────────────────

    def _entry(self, entry_id: str) -> OrderEntry:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        raise NotFoundError("no such entry", entry_id)

    def _latest(self, name: str, confirmed: bool) -> OrderEntry | None:
        for entry in reversed(self.entries):
            if entry.name == name and entry.confirmed == confirmed:
                if confirmed and entry.quantity == 0:
                    continue
                return entry
        return None

    def add_entry(self, name: str, unit_price: float, quantity: int = 1) -> OrderEntry | None:
        """Always starts a new unconfirmed batch."""
        if quantity <= 0:
            return None
        entry = OrderEntry(id=uuid.uuid4().hex, name=name, unit_price=unit_price, quantity=quantity)
        self.entries.append(entry)
        return entry

    def increase_item(self, name: str, unit_price: float) -> OrderEntry:
        entry = self._latest(name, confirmed=False)
        if entry is None:
            return self.add_entry(name, unit_price, 1)
        entry.quantity += 1
        entry.timestamp = datetime.now(tz=timezone.utc)
        return entry

    def decrease_item(self, name: str) -> OrderEntry | None:
        """Take one off the newest unconfirmed batch, falling back to the newest confirmed one."""
        entry = self._latest(name, confirmed=False) or self._latest(name, confirmed=True)
        if entry is None:
            return None
        self._decrement(entry)
        return entry

    def increase_entry(self, entry_id: str) -> OrderEntry:
        entry = self._entry(entry_id)
        entry.quantity += 1
        entry.timestamp = datetime.now(tz=timezone.utc)
        return entry

    def decrease_entry(self, entry_id: str) -> OrderEntry:
        entry = self._entry(entry_id)
        self._decrement(entry)
        return entry

    def _decrement(self, entry: OrderEntry) -> None:
        if entry.quantity <= 0:
            return
        entry.quantity -= 1
        entry.timestamp = datetime.now(tz=timezone.utc)
        # confirmed entries stay visible at 0 until confirm
        if entry.quantity == 0 and not entry.confirmed:
            self.entries.remove(entry)

    def get_total_quantity_by_name(self, name: str) -> int:
        return sum(e.quantity for e in self.entries if e.name == name)

    @property
    def total_price(self) -> float:
        return sum(e.total_price for e in self.entries)

    # ── Diffing ───────────────────────────────────────────────────────────────

    def get_newly_added_items(self) -> list[LineItem]:
        """
        Positive per-name delta of the current quantity over the confirmed
        entries. Decreases never show up here; they travel as patches.
        """
        current = _quantities_by_name(self.entries)
        baseline = _quantities_by_name([e for e in self.entries if e.confirmed])
        prices = {e.name: e.unit_price for e in self.entries if not e.confirmed}

        items = []
        for name, quantity in current.items():
            delta = quantity - baseline.get(name, 0)
            if delta > 0:
                items.append(LineItem(name=name, quantity=delta, unit_price=prices[name]))
        return items

    def compute_patches(self) -> list[PlannedPatch]:
        confirmed = {e.id: e for e in self.entries if e.confirmed}
        patches = []
        for record in self.active_orders:
            entry = confirmed.get(record.id)
            if entry is None:
                if record.status != OrderStatus.CANCELLED:
                    patches.append(PlannedPatch(record.id, [], 0.0))
                continue

            item = record.line_item
            if entry.quantity == item.quantity and entry.unit_price == item.unit_price:
                continue
            patches.append(
                PlannedPatch(
                    order_id=record.id,
                    order_items=[LineItem(name=entry.name, quantity=entry.quantity, unit_price=entry.unit_price)],
                    total_price=entry.total_price,
                    status=OrderStatus.CANCELLED if entry.quantity == 0 else record.status,
                )
            )
        return patches

    def has_pending_changes(self) -> bool:
        current = _quantities_by_name(self.entries)
        canonical: dict[str, int] = defaultdict(int)
        for record in self.active_orders:
            canonical[record.line_item.name] += record.line_item.quantity
        return any(current.get(n, 0) != canonical.get(n, 0) for n in set(current) | set(canonical))

    # ── Server round-trips ────────────────────────────────────────────────────

    def _send_patch(self, patch: PlannedPatch):
        return self.api.patch_order(
            patch.order_id,
            patch.order_items,
            total_price=patch.total_price,
            status=patch.status.value if patch.status else None,
        )

    async def confirm(self) -> ConfirmResult:
        """Send every pending change concurrently, wait for all, then re-sync."""
        additions = self.get_newly_added_items()
        patches = self.compute_patches()
        result = ConfirmResult()
        if not additions and not patches:
            return result

        actions: list[tuple[str, Any]] = []
        for item in additions:
            actions.append((f"create {item.name}", self.api.create_orders(self.table_identifier, [item])))
        for patch in patches:
            actions.append((f"patch {patch.order_id}", self._send_patch(patch)))

        outcomes = await asyncio.gather(*(coro for _, coro in actions), return_exceptions=True)
        for (action, _), outcome in zip(actions, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Table %s: %s failed: %s", self.table_identifier, action, outcome)
                result.failures.append(ConfirmFailure(action, outcome))
            elif action.startswith("create"):
                result.created.extend(outcome)
            else:
                result.patched.append(outcome)

        await self.refresh(clear_unconfirmed=True)
        logger.info(
            "Table %s confirmed: %d created, %d patched, %d failed",
            self.table_identifier, len(result.created), len(result.patched), len(result.failures),
        )
        return result

    async def cancel_entry(self, entry_id: str) -> OrderOut | None:
        """Drop an unconfirmed entry locally, or cancel a confirmed one on the server."""
        entry = self._entry(entry_id)
        if not entry.confirmed:
            self.entries.remove(entry)
            return None
        record = await self.api.cancel_order(entry.id)
        await self.refresh()
        return record
