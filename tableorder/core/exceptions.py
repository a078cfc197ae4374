"""Order lifecycle exceptions."""


class OrderError(Exception):
    """Base exception for order lifecycle errors."""

    status_code = 500

    def __init__(self, message: str, order_id: str | None = None) -> None:
        self.message = message
        self.order_id = order_id
        super().__init__(message)


class ValidationError(OrderError):
    """Malformed or insufficient input (no valid items, bad status value)."""

    status_code = 400


class NotFoundError(OrderError):
    """Unknown or already archived order id."""

    status_code = 404


class InvalidStateError(OrderError):
    """Operation not allowed in the order's current status."""

    status_code = 400


class StoreError(OrderError):
    """The order store failed; fatal for the request, not for the process."""

    status_code = 500
