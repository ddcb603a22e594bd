"""
Two-phase wallet gateway - LINE Pay v3 style reserve then confirm.

A reservation is a provisional hold. Once one exists for an order, the
outcome of the capture can be unknown (confirm timed out, connection dropped).
In that state we never reserve again; the only way forward is reconciliation
against the provider, or an explicit cancel.
"""

import base64
import hashlib
import hmac
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from ranbow_schemas import (
    Order,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    Reservation,
    ReservationState,
)

from apps.client.config import settings
from apps.client.gateways.base import TradeNumberFactory
from apps.client.gateways.exceptions import (
    AmbiguousPending,
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentConfigError,
    PaymentError,
)

logger = logging.getLogger(__name__)

RETURN_CODE_SUCCESS = "0000"

# Return codes of GET /v3/payments/requests/{transactionId}/check
CHECK_WAITING_FOR_PAYER = "0000"
CHECK_AUTHORIZED = "0110"
CHECK_CANCELLED_OR_EXPIRED = "0121"
CHECK_FAILED = "0122"
CHECK_CAPTURED = "0123"

CHECK_STATES: dict[str, ReservationState] = {
    CHECK_WAITING_FOR_PAYER: ReservationState.RESERVED,
    CHECK_AUTHORIZED: ReservationState.AUTHORIZED,
    CHECK_CAPTURED: ReservationState.CAPTURED,
    CHECK_CANCELLED_OR_EXPIRED: ReservationState.EXPIRED,
    CHECK_FAILED: ReservationState.CANCELLED,
}

ApprovalHandler = Callable[[Reservation], Awaitable[None]]


def sign_request(channel_secret: str, uri: str, payload: str, nonce: str) -> str:
    """
    Compute the X-LINE-Authorization header value.

    Signature is Base64(HMAC-SHA256(secret, secret + uri + payload + nonce)),
    where payload is the JSON body for POST and the query string for GET.
    """
    message = f"{channel_secret}{uri}{payload}{nonce}".encode()
    digest = hmac.new(channel_secret.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class ReservationLedger:
    """Outstanding two-phase reservations, at most one per order."""

    def __init__(self) -> None:
        self._reservations: dict[str, Reservation] = {}

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._reservations

    def __len__(self) -> int:
        return len(self._reservations)

    def get(self, order_id: str) -> Reservation | None:
        return self._reservations.get(order_id)

    def record(self, reservation: Reservation) -> None:
        self._reservations[reservation.order_id] = reservation

    def mark(self, order_id: str, state: ReservationState) -> Reservation | None:
        reservation = self._reservations.get(order_id)
        if reservation is None:
            return None
        updated = reservation.model_copy(update={"state": state})
        self._reservations[order_id] = updated
        return updated

    def discard(self, order_id: str) -> Reservation | None:
        return self._reservations.pop(order_id, None)


class TwoPhaseWalletGateway:
    """
    Two-phase wallet gateway implementing the PaymentGateway protocol.

    `process` reserves (POST /v3/payments/request), hands the reservation to
    an optional approval handler so the payer can approve it at the payment
    URL, then confirms (POST /v3/payments/{transactionId}/confirm).

    Failure while reserving is retryable and leaves nothing behind. Failure
    while confirming raises AmbiguousPending with the reservation attached;
    the reservation stays in the ledger until `reconcile` or `cancel`
    resolves it.

    API Reference: https://pay.line.me/documents/online_v3_en.html
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        channel_id: str | None = None,
        channel_secret: str | None = None,
        base_url: str | None = None,
        confirm_url: str | None = None,
        cancel_url: str | None = None,
        currency: str | None = None,
        timeout: float | None = None,
        ledger: ReservationLedger | None = None,
        approval_handler: ApprovalHandler | None = None,
        trade_no_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Initialize the two-phase wallet gateway.

        Args:
            http_client: Optional HTTP client for dependency injection (testing).
            channel_id: Wallet channel id. Defaults to settings.
            channel_secret: Wallet channel secret. Defaults to settings.
            base_url: Wallet API base URL. Defaults to settings.
            confirm_url: Redirect after the payer approves. Defaults to settings.
            cancel_url: Redirect after the payer cancels. Defaults to settings.
            currency: ISO currency code. Defaults to settings.
            timeout: Seconds to wait per provider call. Defaults to settings.
            ledger: Reservation ledger, shared if several gateways coexist.
            approval_handler: Awaited between reserve and confirm; presents the
                confirmation handle to the payer and returns once approved.
            trade_no_factory: Callable minting trade numbers.
        """
        self._timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._base_url = (base_url or settings.WALLET_API_BASE_URL).rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout
        )
        self._owns_client = http_client is None
        self._channel_id = channel_id or settings.WALLET_CHANNEL_ID
        self._channel_secret = channel_secret or settings.WALLET_CHANNEL_SECRET
        self._confirm_url = confirm_url or settings.WALLET_CONFIRM_URL
        self._cancel_url = cancel_url or settings.WALLET_CANCEL_URL
        self._currency = currency or settings.CURRENCY
        self.ledger = ledger or ReservationLedger()
        self._approval_handler = approval_handler
        self._new_trade_no = trade_no_factory or TradeNumberFactory(prefix="LP")

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def method(self) -> PaymentMethod:
        """The payment method this gateway settles."""
        return PaymentMethod.LINE_PAY

    @property
    def provider(self) -> str:
        """Short provider name used in logs and errors."""
        return "linepay"

    # =========================================================================
    # PaymentGateway
    # =========================================================================

    async def process(self, order: Order, amount: int) -> PaymentResult:
        """Reserve, wait for payer approval, then confirm."""
        outstanding = self.ledger.get(order.id)
        if outstanding is not None:
            raise AmbiguousPending(
                f"Order {order.id} already has an outstanding wallet reservation; "
                "reconcile it before paying again",
                reservation=outstanding,
                provider=self.provider,
            )

        reservation = await self.reserve(order, amount)

        if self._approval_handler is not None:
            try:
                await self._approval_handler(reservation)
            except Exception as e:
                logger.error(
                    "Approval step failed for order %s (txn=%s): %s",
                    order.id,
                    reservation.transaction_id,
                    e,
                )
                raise AmbiguousPending(
                    f"Payer approval did not complete for order {order.id}",
                    reservation=reservation,
                    provider=self.provider,
                ) from e

        return await self.confirm(reservation)

    # =========================================================================
    # Phases
    # =========================================================================

    async def reserve(self, order: Order, amount: int) -> Reservation:
        """
        Create a reservation (phase one).

        Raises:
            PaymentConfigError: Missing channel credentials or invalid amount.
            GatewayDeclined: Provider refused the request.
            GatewayTimeout: Provider did not answer in time (retryable).
            GatewayUnavailable: Transport or server failure (retryable).
        """
        self._require_credentials()
        if not isinstance(amount, int) or amount <= 0:
            raise PaymentConfigError(
                f"Wallet amount must be a positive integer, got {amount!r}",
                provider=self.provider,
            )

        trade_no = self._new_trade_no()
        body = {
            "amount": amount,
            "currency": self._currency,
            "orderId": trade_no,
            "packages": [
                {
                    "id": order.id,
                    "amount": amount,
                    "name": "Ranbow Restaurant",
                    "products": self._products(order, amount),
                }
            ],
            "redirectUrls": {
                "confirmUrl": self._confirm_url,
                "cancelUrl": self._cancel_url,
            },
        }

        data = await self._call("POST", "/v3/payments/request", body, trade_no)
        self._raise_for_return_code(data, trade_no, "reserve")

        info = data.get("info") or {}
        payment_url = info.get("paymentUrl") or {}
        handle = payment_url.get("web") or payment_url.get("app") or ""
        reservation = Reservation(
            order_id=order.id,
            transaction_id=str(info.get("transactionId", "")),
            confirmation_handle=str(handle),
            trade_no=trade_no,
            amount=amount,
            currency=self._currency,
            reserved_at=datetime.now(UTC),
        )
        if not reservation.transaction_id:
            raise PaymentConfigError(
                "Wallet reservation response has no transaction id",
                provider=self.provider,
                trade_no=trade_no,
            )

        self.ledger.record(reservation)
        logger.info(
            "Wallet reservation created for order %s (txn=%s, trade_no=%s)",
            order.id,
            reservation.transaction_id,
            trade_no,
        )
        return reservation

    async def confirm(self, reservation: Reservation) -> PaymentResult:
        """
        Capture a reservation (phase two).

        Any failure leaves the capture outcome unknown and raises
        AmbiguousPending; the reservation stays in the ledger.
        """
        uri = f"/v3/payments/{reservation.transaction_id}/confirm"
        body = {"amount": reservation.amount, "currency": reservation.currency}

        try:
            data = await self._call("POST", uri, body, reservation.trade_no)
            self._raise_for_return_code(data, reservation.trade_no, "confirm")
        except PaymentError as e:
            logger.error(
                "Wallet confirm failed for order %s (txn=%s), outcome unknown: %s",
                reservation.order_id,
                reservation.transaction_id,
                e.message,
            )
            raise AmbiguousPending(
                f"Wallet capture outcome unknown for order {reservation.order_id}",
                reservation=reservation,
                provider=self.provider,
            ) from e

        self.ledger.discard(reservation.order_id)
        logger.info(
            "Wallet payment captured for order %s (txn=%s)",
            reservation.order_id,
            reservation.transaction_id,
        )
        return self._result(reservation, data.get("info") or {})

    async def query(self, reservation: Reservation) -> tuple[ReservationState, dict]:
        """Ask the provider where a reservation stands."""
        uri = f"/v3/payments/requests/{reservation.transaction_id}/check"
        data = await self._call("GET", uri, None, reservation.trade_no)
        code = str(data.get("returnCode", ""))
        state = CHECK_STATES.get(code)
        if state is None:
            # Only the codes above are final answers; the hold may still exist
            logger.warning(
                "Wallet check for order %s returned %s: %s",
                reservation.order_id,
                code or "no code",
                data.get("returnMessage", ""),
            )
            raise AmbiguousPending(
                f"Wallet status check failed with code {code or 'none'}",
                reservation=reservation,
                provider=self.provider,
            )
        return state, data

    async def reconcile(self, order_id: str) -> PaymentResult:
        """
        Resolve an outstanding reservation for an order.

        Captured: the reservation is dropped and its result returned.
        Authorized: confirm is attempted again.
        Still waiting for the payer, or an unrecognised check code:
        AmbiguousPending is raised again and the reservation is kept.
        Expired or failed: the reservation is dropped and GatewayDeclined is
        raised, so a fresh `process` may reserve anew.
        """
        reservation = self.ledger.get(order_id)
        if reservation is None:
            raise PaymentConfigError(
                f"No outstanding wallet reservation for order {order_id}",
                provider=self.provider,
            )

        state, data = await self.query(reservation)
        logger.info(
            "Reconciling wallet reservation for order %s (txn=%s): %s",
            order_id,
            reservation.transaction_id,
            state.value,
        )

        if state == ReservationState.CAPTURED:
            self.ledger.discard(order_id)
            return self._result(reservation, data.get("info") or {})

        if state == ReservationState.AUTHORIZED:
            reservation = self.ledger.mark(order_id, state) or reservation
            return await self.confirm(reservation)

        if state == ReservationState.RESERVED:
            raise AmbiguousPending(
                f"Payer has not approved the reservation for order {order_id} yet",
                reservation=reservation,
                provider=self.provider,
            )

        self.ledger.discard(order_id)
        logger.warning(
            "Wallet reservation for order %s is %s, a new payment may be started",
            order_id,
            state.value,
        )
        raise GatewayDeclined(
            f"Wallet reservation for order {order_id} is {state.value}",
            provider=self.provider,
            trade_no=reservation.trade_no,
            code=str(data.get("returnCode", "")) or None,
        )

    async def cancel(self, order_id: str) -> Reservation | None:
        """
        Void an outstanding reservation and drop it from the ledger.

        Returns the voided reservation, or None if there was none.
        """
        reservation = self.ledger.get(order_id)
        if reservation is None:
            return None

        uri = f"/v3/payments/authorizations/{reservation.transaction_id}/void"
        data = await self._call("POST", uri, {}, reservation.trade_no)
        self._raise_for_return_code(data, reservation.trade_no, "void")

        self.ledger.discard(order_id)
        logger.info(
            "Wallet reservation voided for order %s (txn=%s)",
            order_id,
            reservation.transaction_id,
        )
        return reservation.model_copy(update={"state": ReservationState.CANCELLED})

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_credentials(self) -> None:
        if not (self._channel_id and self._channel_secret):
            raise PaymentConfigError(
                "Wallet gateway requires channel id and channel secret",
                provider=self.provider,
            )

    def _products(self, order: Order, amount: int) -> list[dict[str, Any]]:
        # Package amount must equal the sum of product lines, so charges on top
        # of the item subtotal travel as a single line.
        products = [
            {
                "name": item.name or item.menu_item_id,
                "quantity": item.quantity,
                "price": item.unit_price,
            }
            for item in order.items
        ]
        listed = sum(p["quantity"] * p["price"] for p in products)
        if listed != amount:
            products.append(
                {"name": "Tax and service", "quantity": 1, "price": amount - listed}
            )
        return products

    def _headers(self, uri: str, payload: str) -> dict[str, str]:
        nonce = str(uuid.uuid4())
        return {
            "Content-Type": "application/json",
            "X-LINE-ChannelId": self._channel_id,
            "X-LINE-Authorization-Nonce": nonce,
            "X-LINE-Authorization": sign_request(
                self._channel_secret, uri, payload, nonce
            ),
        }

    async def _call(
        self,
        method: str,
        uri: str,
        body: dict[str, Any] | None,
        trade_no: str | None,
    ) -> dict[str, Any]:
        """Send one signed request and return the decoded JSON body."""
        self._require_credentials()
        payload = json.dumps(body, separators=(",", ":")) if body is not None else ""

        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{uri}",
                content=payload.encode() if body is not None else None,
                headers=self._headers(uri, payload),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(
                f"Wallet gateway timed out after {self._timeout}s",
                provider=self.provider,
                trade_no=trade_no,
            ) from e
        except httpx.RequestError as e:
            raise GatewayUnavailable(
                f"Wallet gateway request failed: {e}",
                provider=self.provider,
                trade_no=trade_no,
            ) from e

        if response.status_code >= 500:
            raise GatewayUnavailable(
                f"Wallet gateway error: {response.status_code}",
                provider=self.provider,
                trade_no=trade_no,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PaymentConfigError(
                f"Wallet gateway rejected the request: {response.status_code}",
                provider=self.provider,
                trade_no=trade_no,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailable(
                "Wallet gateway returned a non-JSON body",
                provider=self.provider,
                trade_no=trade_no,
                status_code=response.status_code,
            ) from e

    def _raise_for_return_code(
        self, data: dict[str, Any], trade_no: str | None, phase: str
    ) -> None:
        code = str(data.get("returnCode", ""))
        if code == RETURN_CODE_SUCCESS:
            return
        message = data.get("returnMessage") or f"Wallet {phase} failed"
        logger.warning(
            "Wallet %s returned %s (trade_no=%s): %s", phase, code, trade_no, message
        )
        raise GatewayDeclined(
            str(message),
            provider=self.provider,
            trade_no=trade_no,
            code=code or None,
        )

    def _result(self, reservation: Reservation, info: dict[str, Any]) -> PaymentResult:
        return PaymentResult(
            method=PaymentMethod.LINE_PAY,
            transaction_id=reservation.transaction_id,
            trade_no=reservation.trade_no,
            amount=reservation.amount,
            status=PaymentStatus.COMPLETED,
            provider_data={
                "reservation_transaction_id": reservation.transaction_id,
                "payment_url": reservation.confirmation_handle,
                "pay_info": info.get("payInfo", []),
            },
            processed_at=datetime.now(UTC),
        )
