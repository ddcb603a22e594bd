"""Ordering client exceptions."""

from typing import Any


class OrderingError(Exception):
    """Base exception for ordering client errors."""

    def __init__(self, message: str, order_id: str | None = None) -> None:
        self.message = message
        self.order_id = order_id
        super().__init__(message)


class OrderValidationError(OrderingError):
    """Draft, cart or amount failed validation. The user must correct input."""

    def __init__(
        self,
        message: str,
        order_id: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, order_id)
        self.field = field


class InvalidTransition(OrderingError):
    """An order status change the state machine does not allow."""

    def __init__(
        self,
        from_status: Any,
        to_status: Any,
        order_id: str | None = None,
    ) -> None:
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot move order from {from_value} to {to_value}",
            order_id,
        )
        self.from_status = from_status
        self.to_status = to_status


class OrderAPIError(OrderingError):
    """The backend order/payment API answered with an error status."""

    def __init__(
        self,
        message: str,
        order_id: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message, order_id)
        self.status_code = status_code
        self.response_body = response_body


class NetworkError(OrderAPIError):
    """Transport failure talking to the backend, after retries."""
