"""
Pytest configuration for the ordering client tests.
"""

import asyncio
import itertools
from datetime import UTC, datetime
from typing import Any

import pytest
from ranbow_schemas import (
    Order,
    OrderDraft,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    StaffDashboard,
    StaffOverview,
)

from apps.client.cart.calculator import calculate_totals
from apps.client.exceptions import OrderAPIError
from apps.client.orders.tests.factories import OrderDraftFactory, OrderFactory


class FakeOrderAPI:
    """
    In-memory stand-in for OrderAPIClient.

    Behaves like the backend for the calls checkout and sync make, with knobs
    for latency and one-shot failures.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.orders: dict[str, Order] = {}
        self.payments: dict[str, Payment] = {}
        self.idempotency_keys: dict[str, str] = {}
        self.calls: list[str] = []

        self.fail_create_order: Exception | None = None
        self.fail_create_payment: Exception | None = None
        self.fail_confirm: Exception | None = None
        self.payment_amount_delta = 0

        self._order_ids = itertools.count(5000)
        self._payment_ids = itertools.count(1)

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    @staticmethod
    def _pop(error: Exception | None) -> None:
        if error is not None:
            raise error

    async def create_order(
        self,
        draft: OrderDraft,
        customer_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Order:
        self.calls.append("create_order")
        await self._pause()
        error, self.fail_create_order = self.fail_create_order, None
        self._pop(error)

        if idempotency_key and idempotency_key in self.idempotency_keys:
            return self.orders[self.idempotency_keys[idempotency_key]]

        totals = calculate_totals(draft.items)
        now = datetime.now(UTC)
        order = Order(
            id=str(next(self._order_ids)),
            customer_id=customer_id,
            items=[
                OrderItem(
                    menu_item_id=item.menu_item_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.quantity * item.unit_price,
                    special_requests=item.special_requests,
                )
                for item in draft.items
            ],
            subtotal=totals.subtotal,
            tax=totals.tax,
            service_charge=totals.service_charge,
            total_amount=totals.total_amount,
            status=OrderStatus.PENDING_PAYMENT,
            table_number=draft.table_number,
            payment_method=draft.payment_method,
            special_requests=draft.special_requests,
            created_at=now,
            updated_at=now,
        )
        self.orders[order.id] = order
        if idempotency_key:
            self.idempotency_keys[idempotency_key] = order.id
        return order

    async def get_order(self, order_id: str) -> Order:
        self.calls.append("get_order")
        await self._pause()
        if order_id not in self.orders:
            raise OrderAPIError("Order not found", order_id=order_id, status_code=404)
        return self.orders[order_id]

    async def list_orders(self, customer_id: str | None = None) -> list[Order]:
        self.calls.append("list_orders")
        await self._pause()
        return [
            order
            for order in self.orders.values()
            if customer_id is None or order.customer_id == customer_id
        ]

    async def cancel_order(self, order_id: str, reason: str) -> Order:
        self.calls.append("cancel_order")
        return self._set_status(order_id, OrderStatus.CANCELLED)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        self.calls.append("update_order_status")
        return self._set_status(order_id, status)

    async def create_payment(self, order_id: str, method: PaymentMethod) -> Payment:
        self.calls.append("create_payment")
        await self._pause()
        error, self.fail_create_payment = self.fail_create_payment, None
        self._pop(error)

        order = self.orders[order_id]
        payment = Payment(
            id=f"pay-{next(self._payment_ids)}",
            order_id=order_id,
            method=method,
            amount=order.total_amount + self.payment_amount_delta,
            status=PaymentStatus.PENDING,
        )
        self.payments[payment.id] = payment
        return payment

    async def confirm_payment(
        self,
        payment_id: str,
        transaction_id: str,
        provider_data: dict[str, Any] | None = None,
    ) -> Payment:
        self.calls.append("confirm_payment")
        await self._pause()
        error, self.fail_confirm = self.fail_confirm, None
        self._pop(error)

        payment = self.payments[payment_id].model_copy(
            update={
                "status": PaymentStatus.COMPLETED,
                "transaction_id": transaction_id,
                "provider_data": provider_data or {},
            }
        )
        self.payments[payment_id] = payment
        self._set_status(payment.order_id, OrderStatus.CONFIRMED)
        return payment

    async def get_staff_overview(self) -> StaffOverview:
        self.calls.append("get_staff_overview")
        await self._pause()
        pending = sum(
            1 for o in self.orders.values() if o.status == OrderStatus.PENDING_PAYMENT
        )
        return StaffOverview(pending_orders=pending)

    async def get_staff_dashboard(self, staff_id: str) -> StaffDashboard:
        self.calls.append("get_staff_dashboard")
        await self._pause()
        return StaffDashboard(staff_id=staff_id, active_orders=len(self.orders))

    def _set_status(self, order_id: str, status: OrderStatus) -> Order:
        order = self.orders[order_id].model_copy(
            update={"status": status, "updated_at": datetime.now(UTC)}
        )
        self.orders[order_id] = order
        return order


@pytest.fixture
def fake_api() -> FakeOrderAPI:
    """Create an in-memory backend."""
    return FakeOrderAPI()


@pytest.fixture
def draft() -> OrderDraft:
    """Two beef noodles at 250 and one milk tea at 80, table A12, cash."""
    return OrderDraftFactory()


@pytest.fixture
def order() -> Order:
    """A persisted order awaiting payment (total 667)."""
    return OrderFactory()
