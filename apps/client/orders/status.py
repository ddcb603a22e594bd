"""
Order status state machine.

    PENDING_PAYMENT -> CONFIRMED -> PREPARING -> READY -> COMPLETED
    PENDING_PAYMENT -> CANCELLED
    CONFIRMED       -> CANCELLED

COMPLETED and CANCELLED are terminal. No status transitions to itself.
"""

from ranbow_schemas import Order, OrderStatus, parse_order_status

from apps.client.exceptions import InvalidTransition

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING_PAYMENT: "Awaiting payment",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.READY: "Ready for pickup",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.CANCELLED: "Cancelled",
}


def allowed_transitions(status: OrderStatus | str) -> frozenset[OrderStatus]:
    return TRANSITIONS[parse_order_status(status)]


def can_transition(
    from_status: OrderStatus | str, to_status: OrderStatus | str
) -> bool:
    return parse_order_status(to_status) in allowed_transitions(from_status)


def ensure_transition(
    from_status: OrderStatus | str,
    to_status: OrderStatus | str,
    order_id: str | None = None,
) -> None:
    """Raise InvalidTransition unless from_status may move to to_status."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(
            parse_order_status(from_status),
            parse_order_status(to_status),
            order_id=order_id,
        )


def apply_transition(order: Order, to_status: OrderStatus | str) -> Order:
    """Return a copy of the order in the new status. The input is not modified."""
    target = parse_order_status(to_status)
    ensure_transition(order.status, target, order_id=order.id)
    return order.model_copy(update={"status": target})


def is_terminal(status: OrderStatus | str) -> bool:
    return parse_order_status(status) in TERMINAL_STATUSES


def is_active(status: OrderStatus | str) -> bool:
    return not is_terminal(status)


def display_label(status: OrderStatus | str) -> str:
    return STATUS_LABELS[parse_order_status(status)]
