"""Tests for TwoPhaseWalletGateway - reserve/confirm and reconciliation."""

import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
import respx
from ranbow_schemas import Order, PaymentMethod, Reservation, ReservationState

from apps.client.gateways.base import PaymentGateway
from apps.client.gateways.exceptions import (
    AmbiguousPending,
    GatewayDeclined,
    GatewayTimeout,
    PaymentConfigError,
)
from apps.client.gateways.wallet_two_phase import (
    ReservationLedger,
    TwoPhaseWalletGateway,
    sign_request,
)

BASE_URL = "https://wallet.test"
CHANNEL_ID = "1234567890"
CHANNEL_SECRET = "wallet-channel-secret"
TXN = "2023042201206549310"

REQUEST_URL = f"{BASE_URL}/v3/payments/request"
CONFIRM_URL = f"{BASE_URL}/v3/payments/{TXN}/confirm"
CHECK_URL = f"{BASE_URL}/v3/payments/requests/{TXN}/check"
VOID_URL = f"{BASE_URL}/v3/payments/authorizations/{TXN}/void"

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> TwoPhaseWalletGateway:
    """Create a two-phase wallet gateway pointed at a mocked provider."""
    return TwoPhaseWalletGateway(
        http_client=httpx.AsyncClient(),
        channel_id=CHANNEL_ID,
        channel_secret=CHANNEL_SECRET,
        base_url=BASE_URL,
        currency="TWD",
        timeout=5.0,
    )


@pytest.fixture
def reserve_response() -> dict:
    """Sample payment request API response."""
    return {
        "returnCode": "0000",
        "returnMessage": "Success.",
        "info": {
            "transactionId": int(TXN),
            "paymentAccessToken": "187568751124",
            "paymentUrl": {
                "web": "https://pay.test/web/payment/wait?transactionReserveId=abc",
                "app": "line://pay/payment/abc",
            },
        },
    }


@pytest.fixture
def confirm_response() -> dict:
    """Sample confirm API response."""
    return {
        "returnCode": "0000",
        "returnMessage": "Success.",
        "info": {
            "transactionId": int(TXN),
            "payInfo": [{"method": "BALANCE", "amount": 667}],
        },
    }


# =============================================================================
# Signing
# =============================================================================


class TestSignRequest:
    """Tests for request signing."""

    def test_signature(self) -> None:
        body = '{"amount":667}'
        expected = base64.b64encode(
            hmac.new(
                CHANNEL_SECRET.encode(),
                f"{CHANNEL_SECRET}/v3/payments/request{body}nonce-1".encode(),
                hashlib.sha256,
            ).digest()
        ).decode()

        signature = sign_request(
            CHANNEL_SECRET, "/v3/payments/request", body, "nonce-1"
        )

        assert signature == expected

    @pytest.mark.asyncio
    @respx.mock
    async def test_requests_carry_valid_signature(
        self,
        gateway: TwoPhaseWalletGateway,
        order: Order,
        reserve_response: dict,
    ) -> None:
        route = respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )

        await gateway.reserve(order, 667)

        request = route.calls.last.request
        nonce = request.headers["X-LINE-Authorization-Nonce"]
        assert request.headers["X-LINE-ChannelId"] == CHANNEL_ID
        assert request.headers["X-LINE-Authorization"] == sign_request(
            CHANNEL_SECRET, "/v3/payments/request", request.content.decode(), nonce
        )


# =============================================================================
# Process
# =============================================================================


class TestProcess:
    """Tests for the reserve-then-confirm flow."""

    def test_is_payment_gateway(self, gateway: TwoPhaseWalletGateway) -> None:
        assert isinstance(gateway, PaymentGateway)
        assert gateway.method == PaymentMethod.LINE_PAY

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(
        self,
        gateway: TwoPhaseWalletGateway,
        order: Order,
        reserve_response: dict,
        confirm_response: dict,
    ) -> None:
        reserve = respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        confirm = respx.post(CONFIRM_URL).mock(
            return_value=httpx.Response(200, json=confirm_response)
        )

        result = await gateway.process(order, 667)

        assert reserve.call_count == 1
        assert confirm.call_count == 1
        assert result.transaction_id == TXN
        assert result.amount == 667
        assert result.provider_data["pay_info"] == [
            {"method": "BALANCE", "amount": 667}
        ]
        assert len(gateway.ledger) == 0

        confirm_body = json.loads(confirm.calls.last.request.content)
        assert confirm_body == {"amount": 667, "currency": "TWD"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_package_amount_matches_products(
        self, gateway: TwoPhaseWalletGateway, order: Order, reserve_response: dict
    ) -> None:
        route = respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )

        await gateway.reserve(order, 667)

        body = json.loads(route.calls.last.request.content)
        package = body["packages"][0]
        listed = sum(p["quantity"] * p["price"] for p in package["products"])
        assert body["amount"] == package["amount"] == listed == 667
        assert body["orderId"].startswith("LP")

    @pytest.mark.asyncio
    @respx.mock
    async def test_approval_handler_sees_reservation(
        self,
        order: Order,
        reserve_response: dict,
        confirm_response: dict,
    ) -> None:
        seen: list[Reservation] = []

        async def approve(reservation: Reservation) -> None:
            seen.append(reservation)

        gateway = TwoPhaseWalletGateway(
            http_client=httpx.AsyncClient(),
            channel_id=CHANNEL_ID,
            channel_secret=CHANNEL_SECRET,
            base_url=BASE_URL,
            approval_handler=approve,
        )
        respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        respx.post(CONFIRM_URL).mock(
            return_value=httpx.Response(200, json=confirm_response)
        )

        await gateway.process(order, 667)

        assert len(seen) == 1
        assert seen[0].confirmation_handle.startswith("https://pay.test/web")

    @pytest.mark.asyncio
    @respx.mock
    async def test_reserve_decline_leaves_nothing(
        self, gateway: TwoPhaseWalletGateway, order: Order
    ) -> None:
        respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(
                200, json={"returnCode": "1104", "returnMessage": "Merchant error"}
            )
        )

        with pytest.raises(GatewayDeclined) as exc_info:
            await gateway.process(order, 667)

        assert exc_info.value.code == "1104"
        assert order.id not in gateway.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_reserve_timeout_is_retryable(
        self, gateway: TwoPhaseWalletGateway, order: Order
    ) -> None:
        respx.post(REQUEST_URL).mock(side_effect=httpx.ConnectTimeout("slow"))

        with pytest.raises(GatewayTimeout) as exc_info:
            await gateway.process(order, 667)

        assert exc_info.value.retryable is True
        assert order.id not in gateway.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_confirm_timeout_is_ambiguous(
        self, gateway: TwoPhaseWalletGateway, order: Order, reserve_response: dict
    ) -> None:
        respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        respx.post(CONFIRM_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(AmbiguousPending) as exc_info:
            await gateway.process(order, 667)

        assert exc_info.value.reservation.transaction_id == TXN
        assert isinstance(exc_info.value.__cause__, GatewayTimeout)
        assert order.id in gateway.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_second_reserve_while_outstanding(
        self, gateway: TwoPhaseWalletGateway, order: Order, reserve_response: dict
    ) -> None:
        reserve = respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        respx.post(CONFIRM_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(AmbiguousPending):
            await gateway.process(order, 667)
        with pytest.raises(AmbiguousPending):
            await gateway.process(order, 667)

        assert reserve.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_credentials(self, order: Order) -> None:
        gateway = TwoPhaseWalletGateway(
            http_client=httpx.AsyncClient(), base_url=BASE_URL
        )
        gateway._channel_secret = ""

        with pytest.raises(PaymentConfigError):
            await gateway.process(order, 667)


# =============================================================================
# Reconciliation
# =============================================================================


class TestReconcile:
    """Tests for resolving outstanding reservations."""

    @pytest_asyncio.fixture
    async def pending(
        self, gateway: TwoPhaseWalletGateway, order: Order, reserve_response: dict
    ) -> TwoPhaseWalletGateway:
        """A gateway holding one outstanding reservation for the order."""
        with respx.mock:
            respx.post(REQUEST_URL).mock(
                return_value=httpx.Response(200, json=reserve_response)
            )
            respx.post(CONFIRM_URL).mock(side_effect=httpx.ReadTimeout("slow"))
            with pytest.raises(AmbiguousPending):
                await gateway.process(order, 667)
        return gateway

    @pytest.mark.asyncio
    @respx.mock
    async def test_captured(self, pending: TwoPhaseWalletGateway, order: Order) -> None:
        respx.get(CHECK_URL).mock(
            return_value=httpx.Response(200, json={"returnCode": "0123"})
        )

        result = await pending.reconcile(order.id)

        assert result.transaction_id == TXN
        assert order.id not in pending.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_authorized_confirms_again(
        self, pending: TwoPhaseWalletGateway, order: Order, confirm_response: dict
    ) -> None:
        respx.get(CHECK_URL).mock(
            return_value=httpx.Response(200, json={"returnCode": "0110"})
        )
        confirm = respx.post(CONFIRM_URL).mock(
            return_value=httpx.Response(200, json=confirm_response)
        )

        result = await pending.reconcile(order.id)

        assert confirm.call_count == 1
        assert result.transaction_id == TXN
        assert order.id not in pending.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_still_waiting(
        self, pending: TwoPhaseWalletGateway, order: Order
    ) -> None:
        respx.get(CHECK_URL).mock(
            return_value=httpx.Response(200, json={"returnCode": "0000"})
        )

        with pytest.raises(AmbiguousPending):
            await pending.reconcile(order.id)

        assert order.id in pending.ledger

    @pytest.mark.asyncio
    @respx.mock
    async def test_expired_allows_fresh_reserve(
        self,
        pending: TwoPhaseWalletGateway,
        order: Order,
        reserve_response: dict,
        confirm_response: dict,
    ) -> None:
        respx.get(CHECK_URL).mock(
            return_value=httpx.Response(200, json={"returnCode": "0121"})
        )

        with pytest.raises(GatewayDeclined):
            await pending.reconcile(order.id)
        assert order.id not in pending.ledger

        reserve = respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        respx.post(CONFIRM_URL).mock(
            return_value=httpx.Response(200, json=confirm_response)
        )
        result = await pending.process(order, 667)

        assert reserve.call_count == 1
        assert result.transaction_id == TXN

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_check_code_keeps_reservation(
        self, pending: TwoPhaseWalletGateway, order: Order
    ) -> None:
        respx.get(CHECK_URL).mock(
            return_value=httpx.Response(
                200, json={"returnCode": "9000", "returnMessage": "Internal error."}
            )
        )

        with pytest.raises(AmbiguousPending):
            await pending.reconcile(order.id)

        assert order.id in pending.ledger
        with pytest.raises(AmbiguousPending):
            await pending.process(order, 667)

    @pytest.mark.asyncio
    async def test_nothing_to_reconcile(
        self, gateway: TwoPhaseWalletGateway, order: Order
    ) -> None:
        with pytest.raises(PaymentConfigError):
            await gateway.reconcile(order.id)


class TestCancel:
    """Tests for voiding reservations."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancel_outstanding(
        self, gateway: TwoPhaseWalletGateway, order: Order, reserve_response: dict
    ) -> None:
        respx.post(REQUEST_URL).mock(
            return_value=httpx.Response(200, json=reserve_response)
        )
        void = respx.post(VOID_URL).mock(
            return_value=httpx.Response(200, json={"returnCode": "0000"})
        )
        reservation = await gateway.reserve(order, 667)

        cancelled = await gateway.cancel(order.id)

        assert void.call_count == 1
        assert cancelled is not None
        assert cancelled.transaction_id == reservation.transaction_id
        assert cancelled.state == ReservationState.CANCELLED
        assert order.id not in gateway.ledger

    @pytest.mark.asyncio
    async def test_cancel_without_reservation(
        self, gateway: TwoPhaseWalletGateway, order: Order
    ) -> None:
        assert await gateway.cancel(order.id) is None


class TestReservationLedger:
    """Tests for the reservation ledger."""

    def test_record_mark_discard(self, order: Order) -> None:
        ledger = ReservationLedger()
        reservation = Reservation(
            order_id=order.id,
            transaction_id=TXN,
            confirmation_handle="https://pay.test",
            trade_no="LP1",
            amount=667,
            currency="TWD",
            reserved_at=datetime.now(UTC),
        )

        ledger.record(reservation)
        marked = ledger.mark(order.id, ReservationState.AUTHORIZED)

        assert marked is not None
        assert marked.state == ReservationState.AUTHORIZED
        assert ledger.get(order.id) == marked
        assert ledger.discard(order.id) == marked
        assert order.id not in ledger
        assert ledger.mark(order.id, ReservationState.CAPTURED) is None
