"""
Table Order Service — Order status machine

History-stack driven, not graph driven: any status can be set directly and
`revert` pops the most recent previous status. Functions mutate the record in
place and return whether anything changed; persistence and notifications are
the caller's job.
"""
from tableorder.core.exceptions import InvalidStateError, ValidationError
from tableorder.models.order import Order, OrderStatus


def change_status(order: Order, new_status: OrderStatus) -> bool:
    """Push the current status and switch to `new_status`. Same status is a no-op."""
    current = OrderStatus(order.status)
    if current == new_status:
        return False
    order.status_history = [*(order.status_history or []), current.value]
    order.status = new_status
    if current == OrderStatus.CANCELLED and order.quantity == 0:
        # leaving Cancelled must not leave a zero-quantity record behind
        _restore_single_quantity(order)
    return True


def cancel(order: Order) -> bool:
    """Zero the line item and mark the record Cancelled. Idempotent."""
    changed = order.quantity != 0 or order.total_price != 0
    order.quantity = 0
    order.total_price = 0
    return change_status(order, OrderStatus.CANCELLED) or changed


def replace_line_item(
    order: Order,
    name: str,
    quantity: int,
    unit_price: float,
    total_price: float,
    status: OrderStatus | None = None,
) -> bool:
    """Overwrite the line item and optionally move to `status`."""
    target = status if status is not None else OrderStatus(order.status)
    if quantity == 0 and target != OrderStatus.CANCELLED:
        raise ValidationError("quantity 0 is only allowed for cancelled orders", order.id)

    changed = (
        order.item_name != name
        or order.quantity != quantity
        or order.unit_price != unit_price
        or order.total_price != total_price
    )
    order.item_name = name
    order.quantity = quantity
    order.unit_price = unit_price
    order.total_price = total_price
    if status is not None:
        # the line item is already final, skip the quantity restore in change_status
        current = OrderStatus(order.status)
        if current != status:
            order.status_history = [*(order.status_history or []), current.value]
            order.status = status
            changed = True
    return changed


def revert(order: Order) -> None:
    """Pop the last history entry into `status`.

    Reverting a cancellation with the zero-quantity marker restores quantity
    to exactly 1; the pre-cancellation quantity is not kept.
    """
    history = list(order.status_history or [])
    if not history:
        raise InvalidStateError("no history to revert", order.id)
    was_cancelled = OrderStatus(order.status) == OrderStatus.CANCELLED
    previous = OrderStatus(history.pop())
    order.status_history = history
    order.status = previous
    if was_cancelled and order.quantity == 0:
        _restore_single_quantity(order)


def _restore_single_quantity(order: Order) -> None:
    order.quantity = 1
    order.total_price = order.unit_price * 1
