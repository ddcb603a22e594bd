"""Concrete sync loops for the customer order views and the staff dashboard."""

import asyncio
import logging
from collections.abc import Iterable, Iterator

from ranbow_schemas import Order, OrderStatus, StaffDashboard, StaffOverview

from apps.client.api.client import OrderAPIClient
from apps.client.config import settings
from apps.client.orders.status import is_active, is_terminal
from apps.client.sync.poller import SyncPoller

logger = logging.getLogger(__name__)


class OrderCollection:
    """Orders keyed by id, refreshed from full-collection fetches."""

    def __init__(self, orders: Iterable[Order] = ()) -> None:
        self._orders: dict[str, Order] = {order.id: order for order in orders}

    def __len__(self) -> int:
        return len(self._orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self._orders.values())

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._orders

    def get(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def replace(
        self, orders: Iterable[Order]
    ) -> list[tuple[Order, OrderStatus | None]]:
        """
        Replace the collection with a fresh fetch.

        Returns:
            (order, previous status) for every order that is new or whose
            status changed. Previous status is None for new orders.
        """
        fresh = {order.id: order for order in orders}
        changes = self._diff(fresh.values())
        self._orders = fresh
        return changes

    def merge(self, orders: Iterable[Order]) -> list[tuple[Order, OrderStatus | None]]:
        """Upsert orders by id, leaving the others in place."""
        orders = list(orders)
        changes = self._diff(orders)
        for order in orders:
            self._orders[order.id] = order
        return changes

    def active(self) -> list[Order]:
        return [order for order in self if is_active(order.status)]

    def terminal(self) -> list[Order]:
        return [order for order in self if is_terminal(order.status)]

    def _diff(self, orders: Iterable[Order]) -> list[tuple[Order, OrderStatus | None]]:
        changes = []
        for order in orders:
            previous = self._orders.get(order.id)
            if previous is None:
                changes.append((order, None))
            elif previous.status != order.status:
                changes.append((order, previous.status))
        return changes


class CustomerOrderSync:
    """
    Keeps a customer's order list (and optionally one order's detail) fresh.

    Status changes found by a refresh are logged and collected in
    `status_changes` until a view takes them with `drain_status_changes`.
    """

    def __init__(
        self,
        api: OrderAPIClient,
        customer_id: str,
        order_id: str | None = None,
        interval: float | None = None,
    ) -> None:
        self._api = api
        self.customer_id = customer_id
        self.order_id = order_id
        self.orders = OrderCollection()
        self.status_changes: list[tuple[Order, OrderStatus | None]] = []
        self.poller: SyncPoller[list[Order]] = SyncPoller(
            self._fetch,
            interval=interval or settings.CUSTOMER_POLL_INTERVAL_SECONDS,
            name=f"customer-{customer_id}",
        )

    @property
    def current_order(self) -> Order | None:
        return self.orders.get(self.order_id) if self.order_id else None

    @property
    def last_error(self) -> Exception | None:
        return self.poller.last_error

    async def _fetch(self) -> list[Order]:
        orders = await self._api.list_orders(customer_id=self.customer_id)

        # Both fetches must succeed before the collection changes
        detail = None
        if self.order_id and self.order_id not in {order.id for order in orders}:
            detail = await self._api.get_order(self.order_id)

        changes = self.orders.replace(orders)
        if detail is not None:
            changes.extend(self.orders.merge([detail]))

        for order, previous in changes:
            if previous is not None:
                logger.info(
                    "Order %s status %s -> %s",
                    order.id,
                    previous.value,
                    order.status.value,
                )
        self.status_changes.extend(changes)
        return list(self.orders)

    def start(self) -> None:
        self.poller.start()

    def stop(self) -> None:
        self.poller.stop()

    def set_visible(self, visible: bool) -> None:
        self.poller.set_visible(visible)

    async def refresh(self) -> list[Order]:
        return await self.poller.refresh()

    def drain_status_changes(self) -> list[tuple[Order, OrderStatus | None]]:
        """Return the collected status changes and start a new batch."""
        changes, self.status_changes = self.status_changes, []
        return changes


class StaffDashboardSync:
    """Polls the staff overview and, for a signed-in staff member, their dashboard."""

    def __init__(
        self,
        api: OrderAPIClient,
        staff_id: str | None = None,
        interval: float | None = None,
    ) -> None:
        self._api = api
        self.staff_id = staff_id
        self.overview: StaffOverview | None = None
        self.dashboard: StaffDashboard | None = None
        self.poller: SyncPoller[StaffOverview] = SyncPoller(
            self._fetch,
            interval=interval or settings.STAFF_POLL_INTERVAL_SECONDS,
            name="staff-dashboard",
        )

    @property
    def last_error(self) -> Exception | None:
        return self.poller.last_error

    async def _fetch(self) -> StaffOverview:
        if self.staff_id is None:
            self.overview = await self._api.get_staff_overview()
            return self.overview

        overview, dashboard = await asyncio.gather(
            self._api.get_staff_overview(),
            self._api.get_staff_dashboard(self.staff_id),
        )
        self.overview, self.dashboard = overview, dashboard
        return overview

    def start(self) -> None:
        self.poller.start()

    def stop(self) -> None:
        self.poller.stop()

    def set_visible(self, visible: bool) -> None:
        self.poller.set_visible(visible)

    async def refresh(self) -> StaffOverview:
        return await self.poller.refresh()
