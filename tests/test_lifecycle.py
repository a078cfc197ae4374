"""
Status machine unit tests (no store involved).
"""
import pytest

from tableorder.core.exceptions import InvalidStateError, ValidationError
from tableorder.models.order import Order, OrderStatus
from tableorder.services import lifecycle


def make_order(quantity=2, unit_price=5.0, status=OrderStatus.IN_PROGRESS, history=None) -> Order:
    return Order(
        id="order-1",
        table_identifier="T1",
        item_name="Momo",
        quantity=quantity,
        unit_price=unit_price,
        total_price=quantity * unit_price,
        status=status,
        status_history=list(history or []),
        kitchen_done=False,
    )


def test_change_status_pushes_previous_status():
    order = make_order()
    assert lifecycle.change_status(order, OrderStatus.DELIVERED) is True
    assert lifecycle.change_status(order, OrderStatus.PAID) is True
    assert order.status == OrderStatus.PAID
    assert order.status_history == ["InProgress", "Delivered"]


def test_change_status_to_same_status_is_noop():
    order = make_order(status=OrderStatus.PAID, history=["InProgress", "Delivered"])
    assert lifecycle.change_status(order, OrderStatus.PAID) is False
    assert order.status_history == ["InProgress", "Delivered"]


def test_change_status_allows_any_jump():
    order = make_order(status=OrderStatus.PAID, history=["InProgress"])
    lifecycle.change_status(order, OrderStatus.IN_PROGRESS)
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.status_history == ["InProgress", "Paid"]


def test_cancel_zeroes_line_item_and_keeps_name_and_price():
    order = make_order(quantity=3)
    assert lifecycle.cancel(order) is True
    assert order.status == OrderStatus.CANCELLED
    assert order.quantity == 0
    assert order.total_price == 0
    assert order.item_name == "Momo"
    assert order.unit_price == 5.0
    assert order.status_history == ["InProgress"]


def test_cancel_is_idempotent():
    order = make_order()
    lifecycle.cancel(order)
    assert lifecycle.cancel(order) is False
    assert order.status_history == ["InProgress"]


def test_revert_of_cancellation_restores_single_quantity():
    order = make_order(quantity=7)
    lifecycle.cancel(order)
    lifecycle.revert(order)
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.status_history == []
    assert order.quantity == 1
    assert order.total_price == 5.0


def test_revert_is_inverse_of_last_change():
    order = make_order(quantity=4)
    lifecycle.change_status(order, OrderStatus.DELIVERED)
    lifecycle.revert(order)
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.status_history == []
    assert order.quantity == 4


def test_revert_with_empty_history_fails_without_mutation():
    order = make_order()
    with pytest.raises(InvalidStateError, match="no history to revert"):
        lifecycle.revert(order)
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.quantity == 2


def test_leaving_cancelled_by_direct_set_restores_quantity():
    order = make_order()
    lifecycle.cancel(order)
    lifecycle.change_status(order, OrderStatus.DELIVERED)
    assert order.quantity == 1
    assert order.total_price == 5.0


def test_replace_line_item_with_status_change():
    order = make_order()
    lifecycle.replace_line_item(order, "Momo", 3, 5.0, 15.0, status=OrderStatus.DELIVERED)
    assert order.quantity == 3
    assert order.total_price == 15.0
    assert order.status == OrderStatus.DELIVERED
    assert order.status_history == ["InProgress"]


def test_replace_line_item_to_zero_requires_cancelled_target():
    order = make_order()
    with pytest.raises(ValidationError):
        lifecycle.replace_line_item(order, "Momo", 0, 5.0, 0.0)
    assert order.quantity == 2

    lifecycle.replace_line_item(order, "Momo", 0, 5.0, 0.0, status=OrderStatus.CANCELLED)
    assert order.status == OrderStatus.CANCELLED
    assert order.quantity == 0


@pytest.mark.parametrize("raw", ["In progress", "in_progress", "INPROGRESS", "InProgress"])
def test_status_parse_accepts_legacy_spellings(raw):
    assert OrderStatus.parse(raw) == OrderStatus.IN_PROGRESS


def test_status_parse_rejects_unknown():
    with pytest.raises(ValidationError, match="invalid status"):
        OrderStatus.parse("Archived")
