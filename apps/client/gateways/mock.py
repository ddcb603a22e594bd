"""Mock payment gateway for development and testing."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from ranbow_schemas import Order, PaymentMethod, PaymentResult, PaymentStatus

from apps.client.gateways.base import TradeNumberFactory, generate_transaction_id
from apps.client.gateways.exceptions import (
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
)


class MockGateway:
    """
    Mock payment gateway for development and testing.

    Provides configurable behavior for simulating:
    - Successful payments for any method
    - Declines and timeouts (always, or for the next N calls)
    - Provider outages
    - Processing delays

    Usage:
        gateway = MockGateway(method=PaymentMethod.CREDIT_CARD, decline_next=1)
        await gateway.process(order, order.total_amount)  # raises GatewayDeclined
        await gateway.process(order, order.total_amount)  # succeeds
    """

    def __init__(
        self,
        method: PaymentMethod = PaymentMethod.CREDIT_CARD,
        decline: bool = False,
        timeout: bool = False,
        unavailable: bool = False,
        decline_next: int = 0,
        timeout_next: int = 0,
        delay_ms: int = 0,
        trade_no_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Initialize mock gateway.

        Args:
            method: Payment method this gateway claims to settle.
            decline: If True, every call is declined.
            timeout: If True, every call times out.
            unavailable: If True, every call fails as a provider outage.
            decline_next: Number of upcoming calls to decline.
            timeout_next: Number of upcoming calls to time out.
            delay_ms: Simulated processing delay in milliseconds.
            trade_no_factory: Callable minting trade numbers.
        """
        self._method = method
        self._decline = decline
        self._timeout = timeout
        self._unavailable = unavailable
        self._decline_next = decline_next
        self._timeout_next = timeout_next
        self._delay_ms = delay_ms
        self._new_trade_no = trade_no_factory or TradeNumberFactory(prefix="MK")

        # Every call, successful or not, for assertions
        self.calls: list[tuple[str, int, str]] = []

    @property
    def method(self) -> PaymentMethod:
        return self._method

    @property
    def provider(self) -> str:
        return "mock"

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def trade_numbers(self) -> list[str]:
        return [trade_no for _, _, trade_no in self.calls]

    # =========================================================================
    # Configuration methods (for test setup)
    # =========================================================================

    def set_decline(self, decline: bool = True) -> None:
        self._decline = decline

    def set_timeout(self, timeout: bool = True) -> None:
        self._timeout = timeout

    def set_unavailable(self, unavailable: bool = True) -> None:
        self._unavailable = unavailable

    # =========================================================================
    # PaymentGateway
    # =========================================================================

    async def process(self, order: Order, amount: int) -> PaymentResult:
        """Simulate a payment."""
        trade_no = self._new_trade_no()
        self.calls.append((order.id, amount, trade_no))

        if self._delay_ms > 0:
            await asyncio.sleep(self._delay_ms / 1000)

        if self._unavailable:
            raise GatewayUnavailable(
                "Mock provider unavailable", provider="mock", trade_no=trade_no
            )

        if self._timeout or self._timeout_next > 0:
            self._timeout_next = max(0, self._timeout_next - 1)
            raise GatewayTimeout(
                "Mock payment timed out", provider="mock", trade_no=trade_no
            )

        if self._decline or self._decline_next > 0:
            self._decline_next = max(0, self._decline_next - 1)
            raise GatewayDeclined(
                "Mock payment declined",
                provider="mock",
                trade_no=trade_no,
                code="MOCK_DECLINED",
            )

        return PaymentResult(
            method=self._method,
            transaction_id=generate_transaction_id("MOCK"),
            trade_no=trade_no,
            amount=amount,
            status=PaymentStatus.COMPLETED,
            provider_data={"mock": True},
            processed_at=datetime.now(UTC),
        )
