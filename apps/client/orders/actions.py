"""Order actions - status changes that write to the backend."""

import logging

from ranbow_schemas import Order, OrderStatus

from apps.client.api.client import OrderAPIClient
from apps.client.orders.status import ensure_transition

logger = logging.getLogger(__name__)


class OrderActions:
    """
    Customer cancel and staff progression.

    The current order is fetched first and the transition checked locally, so
    an illegal change is rejected before anything is written.
    """

    def __init__(self, api: OrderAPIClient) -> None:
        self._api = api

    async def cancel(self, order_id: str, reason: str) -> Order:
        """Cancel an order that is still PENDING_PAYMENT or CONFIRMED."""
        order = await self._api.get_order(order_id)
        ensure_transition(order.status, OrderStatus.CANCELLED, order_id=order_id)

        cancelled = await self._api.cancel_order(order_id, reason)
        logger.info("Order %s cancelled: %s", order_id, reason)
        return cancelled

    async def advance(self, order_id: str, to_status: OrderStatus) -> Order:
        """Move an order forward (staff side)."""
        order = await self._api.get_order(order_id)
        ensure_transition(order.status, to_status, order_id=order_id)

        updated = await self._api.update_order_status(order_id, to_status)
        logger.info(
            "Order %s moved %s -> %s",
            order_id,
            order.status.value,
            to_status.value,
        )
        return updated
