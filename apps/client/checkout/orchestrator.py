"""
Checkout orchestration - turns a cart into a paid order.

Handles:
1. Validating the draft and rejecting concurrent submits
2. Creating the order (with an idempotency key derived from the cart)
3. Creating the payment record and checking its amount against the order
4. Running the payment through the gateway for the chosen method
5. Confirming the payment with the backend and clearing the cart
6. Payment-only retries and two-phase wallet reconciliation
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel
from ranbow_schemas import (
    Order,
    OrderDraft,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
)

from apps.client.api.client import OrderAPIClient
from apps.client.cart.calculator import calculate_totals
from apps.client.cart.session import CartSession
from apps.client.config import settings
from apps.client.exceptions import (
    NetworkError,
    OrderingError,
    OrderValidationError,
)
from apps.client.gateways.base import PaymentGateway
from apps.client.gateways.exceptions import (
    AmbiguousPending,
    AttestationFailed,
    CapabilityUnavailable,
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentConfigError,
    PaymentError,
)

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    """Where a checkout currently is."""

    IDLE = "IDLE"
    CREATING_ORDER = "CREATING_ORDER"
    CREATING_PAYMENT = "CREATING_PAYMENT"
    PROCESSING_PAYMENT = "PROCESSING_PAYMENT"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


IN_FLIGHT_STATES = frozenset(
    {
        CheckoutState.CREATING_ORDER,
        CheckoutState.CREATING_PAYMENT,
        CheckoutState.PROCESSING_PAYMENT,
    }
)


class CheckoutErrorKind(str, Enum):
    """Why a checkout failed."""

    VALIDATION = "VALIDATION"
    DECLINED = "DECLINED"
    TIMEOUT = "TIMEOUT"
    AMBIGUOUS_PENDING = "AMBIGUOUS_PENDING"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    CONFIG = "CONFIG"
    CAPABILITY = "CAPABILITY"
    ATTESTATION = "ATTESTATION"
    NETWORK = "NETWORK"
    API = "API"
    IN_FLIGHT = "IN_FLIGHT"


# Failures the payer can act on from the payment step, once an order exists
RECOVERABLE_KINDS = frozenset(
    {
        CheckoutErrorKind.DECLINED,
        CheckoutErrorKind.TIMEOUT,
        CheckoutErrorKind.AMBIGUOUS_PENDING,
        CheckoutErrorKind.GATEWAY_UNAVAILABLE,
        CheckoutErrorKind.CAPABILITY,
        CheckoutErrorKind.ATTESTATION,
        CheckoutErrorKind.NETWORK,
    }
)

_PAYMENT_ERROR_KINDS: list[tuple[type[PaymentError], CheckoutErrorKind]] = [
    (AmbiguousPending, CheckoutErrorKind.AMBIGUOUS_PENDING),
    (GatewayDeclined, CheckoutErrorKind.DECLINED),
    (GatewayTimeout, CheckoutErrorKind.TIMEOUT),
    (GatewayUnavailable, CheckoutErrorKind.GATEWAY_UNAVAILABLE),
    (PaymentConfigError, CheckoutErrorKind.CONFIG),
    (CapabilityUnavailable, CheckoutErrorKind.CAPABILITY),
    (AttestationFailed, CheckoutErrorKind.ATTESTATION),
]


class CheckoutError(Exception):
    """
    Checkout failed.

    Attributes:
        kind: Failure category.
        order_id: Set once the order exists; the order then stays
            PENDING_PAYMENT and can be paid again with `retry_payment`.
        payment_id: Set once a payment record exists.
        retryable: Repeating the same call may succeed.
        method: Payment method in use, for pre-filling the payment step.
    """

    def __init__(
        self,
        message: str,
        kind: CheckoutErrorKind,
        order_id: str | None = None,
        payment_id: str | None = None,
        retryable: bool = False,
        method: PaymentMethod | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.order_id = order_id
        self.payment_id = payment_id
        self.retryable = retryable
        self.method = method

    @property
    def recoverable(self) -> bool:
        """The user can stay on the payment step."""
        return self.order_id is not None and self.kind in RECOVERABLE_KINDS

    @property
    def return_to(self) -> str:
        """Which step the UI should go back to: "payment" or "order"."""
        return "payment" if self.recoverable else "order"


class CheckoutResult(BaseModel):
    """Successful checkout."""

    order: Order
    payment: Payment
    result: PaymentResult
    idempotency_key: str | None = None


def idempotency_key(
    draft: OrderDraft,
    window_seconds: int | None = None,
    now: float | None = None,
) -> str:
    """
    Derive the order idempotency key.

    The same cart contents and table number within one time window give the
    same key, so a duplicate submit from another tab or a retried request
    maps onto the order already created.
    """
    window_seconds = window_seconds or settings.IDEMPOTENCY_WINDOW_SECONDS
    now = time.time() if now is None else now

    lines = sorted(
        (
            item.menu_item_id,
            item.quantity,
            item.unit_price,
            item.special_requests or "",
        )
        for item in draft.items
    )
    material = json.dumps(
        {
            "table": draft.table_number,
            "items": lines,
            "window": int(now // window_seconds),
        },
        separators=(",", ":"),
    )
    return hashlib.sha256(material.encode()).hexdigest()[:32]


class CheckoutOrchestrator:
    """
    Runs one checkout at a time.

    Only one submit (or retry, or reconcile) may be in flight. A second call
    while one is running is rejected with kind IN_FLIGHT; nothing is queued.
    The state is set before the first await, so the check holds for tasks
    racing on the same event loop.
    """

    def __init__(
        self,
        api: OrderAPIClient,
        gateways: Mapping[PaymentMethod, PaymentGateway],
        cart: CartSession | None = None,
        customer_id: str | None = None,
        idempotency_window: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self._gateways = dict(gateways)
        self._cart = cart
        self._customer_id = customer_id
        self._idempotency_window = (
            idempotency_window or settings.IDEMPOTENCY_WINDOW_SECONDS
        )
        self._clock = clock

        self.state = CheckoutState.IDLE
        # Latest payment record per order, reused by payment-only retries
        self._payments: dict[str, Payment] = {}
        # Gateway succeeded but the backend confirm did not go through
        self._unconfirmed: dict[str, tuple[Payment, PaymentResult]] = {}

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    def payment_attempt(self, order_id: str) -> Payment | None:
        """Latest payment record for an order, as known locally."""
        return self._payments.get(order_id)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def submit(self, draft: OrderDraft) -> CheckoutResult:
        """
        Create an order from a draft and pay for it.

        Raises:
            CheckoutError: On any failure. If the order was created, its id is
                on the error and the order stays PENDING_PAYMENT.
        """
        self._enter(CheckoutState.CREATING_ORDER)
        try:
            gateway = self._validate(draft)
            key = idempotency_key(draft, self._idempotency_window, self._clock())

            logger.info(
                "Creating order for table %s (%d lines, method=%s)",
                draft.table_number,
                len(draft.items),
                draft.payment_method.value,
            )
            try:
                order = await self._api.create_order(
                    draft, customer_id=self._customer_id, idempotency_key=key
                )
            except OrderingError as e:
                raise self._api_error(e, "Order creation failed") from e

            logger.info("Order %s created (total=%d)", order.id, order.total_amount)

            # The idempotency key can hand back an order this client already
            # tried to pay for
            if order.id in self._unconfirmed:
                result = await self._confirm_only(order.id)
            else:
                if order.status != OrderStatus.PENDING_PAYMENT:
                    raise CheckoutError(
                        f"Order {order.id} is {order.status.value}, "
                        "not awaiting payment",
                        kind=CheckoutErrorKind.VALIDATION,
                        order_id=order.id,
                    )
                previous = self._payments.get(order.id)
                reuse = (
                    previous if previous and previous.method == gateway.method else None
                )
                result = await self._pay(order, gateway, payment=reuse)
            return result.model_copy(update={"idempotency_key": key})
        finally:
            # Cancellation or any failure must not leave the guard set
            if self.in_flight:
                self.state = CheckoutState.FAILED

    async def retry_payment(
        self, order_id: str, method: PaymentMethod | None = None
    ) -> CheckoutResult:
        """
        Pay again for an order left in PENDING_PAYMENT.

        The pending payment record is reused when the method is unchanged; a
        different method gets a new payment record.
        """
        self._enter(CheckoutState.CREATING_PAYMENT)
        try:
            if order_id in self._unconfirmed:
                return await self._confirm_only(order_id)

            try:
                order = await self._api.get_order(order_id)
            except OrderingError as e:
                raise self._api_error(e, "Could not load order", order_id) from e

            if order.status != OrderStatus.PENDING_PAYMENT:
                raise CheckoutError(
                    f"Order {order_id} is {order.status.value}, not awaiting payment",
                    kind=CheckoutErrorKind.VALIDATION,
                    order_id=order_id,
                )

            previous = self._payments.get(order_id)
            method = method or (previous.method if previous else None)
            method = method or order.payment_method
            if method is None:
                raise CheckoutError(
                    "No payment method selected",
                    kind=CheckoutErrorKind.VALIDATION,
                    order_id=order_id,
                )

            gateway = self._gateway_for(method, order_id)
            reuse = previous if previous and previous.method == method else None
            if reuse is not None:
                logger.info(
                    "Retrying payment %s for order %s with %s",
                    reuse.id,
                    order_id,
                    method.value,
                )
            return await self._pay(order, gateway, payment=reuse)
        finally:
            # Cancellation or any failure must not leave the guard set
            if self.in_flight:
                self.state = CheckoutState.FAILED

    async def reconcile_payment(self, order_id: str) -> CheckoutResult:
        """Resolve an AMBIGUOUS_PENDING two-phase wallet attempt."""
        self._enter(CheckoutState.PROCESSING_PAYMENT)
        try:
            payment = self._payments.get(order_id)
            if payment is None:
                raise CheckoutError(
                    f"No payment attempt recorded for order {order_id}",
                    kind=CheckoutErrorKind.VALIDATION,
                    order_id=order_id,
                )

            gateway = self._gateway_for(payment.method, order_id)
            reconcile = getattr(gateway, "reconcile", None)
            if reconcile is None:
                raise CheckoutError(
                    f"{payment.method.value} payments cannot be reconciled",
                    kind=CheckoutErrorKind.VALIDATION,
                    order_id=order_id,
                    payment_id=payment.id,
                )

            try:
                result = await reconcile(order_id)
            except PaymentError as e:
                raise self._payment_error(e, order_id, payment) from e

            try:
                order = await self._api.get_order(order_id)
            except OrderingError as e:
                raise self._api_error(
                    e, "Could not load order", order_id, payment.id
                ) from e

            return await self._finish(order, payment, result)
        finally:
            # Cancellation or any failure must not leave the guard set
            if self.in_flight:
                self.state = CheckoutState.FAILED

    # =========================================================================
    # Steps
    # =========================================================================

    def _enter(self, state: CheckoutState) -> None:
        if self.in_flight:
            raise CheckoutError(
                f"A checkout is already in progress ({self.state.value})",
                kind=CheckoutErrorKind.IN_FLIGHT,
            )
        self.state = state

    def _validate(self, draft: OrderDraft) -> PaymentGateway:
        if not draft.items:
            raise CheckoutError(
                "Cart is empty", kind=CheckoutErrorKind.VALIDATION
            )
        if not draft.table_number:
            raise CheckoutError(
                "Table number is required", kind=CheckoutErrorKind.VALIDATION
            )
        try:
            calculate_totals(draft.items)
        except OrderValidationError as e:
            raise CheckoutError(
                e.message, kind=CheckoutErrorKind.VALIDATION
            ) from e
        return self._gateway_for(draft.payment_method)

    def _gateway_for(
        self, method: PaymentMethod, order_id: str | None = None
    ) -> PaymentGateway:
        gateway = self._gateways.get(method)
        if gateway is None:
            raise CheckoutError(
                f"Payment method {method.value} is not available",
                kind=CheckoutErrorKind.VALIDATION,
                order_id=order_id,
                method=method,
            )
        return gateway

    async def _pay(
        self,
        order: Order,
        gateway: PaymentGateway,
        payment: Payment | None = None,
    ) -> CheckoutResult:
        self.state = CheckoutState.CREATING_PAYMENT

        if payment is None:
            try:
                payment = await self._api.create_payment(order.id, gateway.method)
            except OrderingError as e:
                raise self._api_error(
                    e, "Payment creation failed", order.id, method=gateway.method
                ) from e
        self._payments[order.id] = payment

        if payment.amount != order.total_amount:
            logger.error(
                "Payment %s amount %d does not match order %s total %d",
                payment.id,
                payment.amount,
                order.id,
                order.total_amount,
            )
            raise CheckoutError(
                f"Payment amount {payment.amount} does not match order total "
                f"{order.total_amount}",
                kind=CheckoutErrorKind.VALIDATION,
                order_id=order.id,
                payment_id=payment.id,
            )

        self.state = CheckoutState.PROCESSING_PAYMENT
        logger.info(
            "Processing payment %s for order %s via %s",
            payment.id,
            order.id,
            gateway.provider,
        )
        try:
            result = await gateway.process(order, payment.amount)
        except PaymentError as e:
            raise self._payment_error(e, order.id, payment) from e

        return await self._finish(order, payment, result)

    async def _finish(
        self, order: Order, payment: Payment, result: PaymentResult
    ) -> CheckoutResult:
        """Tell the backend the payment went through, then clear the cart."""
        self._unconfirmed[order.id] = (payment, result)

        provider_data: dict[str, Any] = dict(result.provider_data)
        if result.trade_no:
            provider_data.setdefault("trade_no", result.trade_no)

        try:
            confirmed = await self._api.confirm_payment(
                payment.id, result.transaction_id, provider_data
            )
        except OrderingError as e:
            logger.error(
                "Payment %s for order %s succeeded at the gateway but the "
                "backend confirm failed: %s",
                payment.id,
                order.id,
                e.message,
            )
            raise self._api_error(
                e, "Payment confirmation failed", order.id, payment.id, payment.method
            ) from e

        del self._unconfirmed[order.id]
        self._payments[order.id] = confirmed
        if self._cart is not None:
            self._cart.clear()

        self.state = CheckoutState.COMPLETE
        logger.info(
            "Checkout complete for order %s (payment=%s, txn=%s)",
            order.id,
            confirmed.id,
            result.transaction_id,
        )
        return CheckoutResult(order=order, payment=confirmed, result=result)

    async def _confirm_only(self, order_id: str) -> CheckoutResult:
        payment, result = self._unconfirmed[order_id]
        logger.info(
            "Re-sending confirmation for payment %s of order %s", payment.id, order_id
        )
        try:
            order = await self._api.get_order(order_id)
        except OrderingError as e:
            raise self._api_error(
                e, "Could not load order", order_id, payment.id, payment.method
            ) from e
        return await self._finish(order, payment, result)

    # =========================================================================
    # Error mapping
    # =========================================================================

    def _payment_error(
        self, error: PaymentError, order_id: str, payment: Payment
    ) -> CheckoutError:
        kind = CheckoutErrorKind.GATEWAY_UNAVAILABLE
        for error_type, mapped in _PAYMENT_ERROR_KINDS:
            if isinstance(error, error_type):
                kind = mapped
                break

        if kind != CheckoutErrorKind.AMBIGUOUS_PENDING:
            self._payments[order_id] = payment.model_copy(
                update={"status": PaymentStatus.FAILED}
            )

        if kind in (CheckoutErrorKind.CONFIG, CheckoutErrorKind.AMBIGUOUS_PENDING):
            logger.error(
                "Payment for order %s failed (%s): %s",
                order_id,
                kind.value,
                error.message,
            )
        else:
            logger.warning(
                "Payment for order %s failed (%s): %s",
                order_id,
                kind.value,
                error.message,
            )

        return CheckoutError(
            error.message,
            kind=kind,
            order_id=order_id,
            payment_id=payment.id,
            retryable=error.retryable,
            method=payment.method,
        )

    def _api_error(
        self,
        error: OrderingError,
        context: str,
        order_id: str | None = None,
        payment_id: str | None = None,
        method: PaymentMethod | None = None,
    ) -> CheckoutError:
        if isinstance(error, NetworkError):
            kind, retryable = CheckoutErrorKind.NETWORK, True
        elif isinstance(error, OrderValidationError):
            kind, retryable = CheckoutErrorKind.VALIDATION, False
        else:
            kind, retryable = CheckoutErrorKind.API, False

        logger.warning("%s (order=%s): %s", context, order_id, error.message)
        return CheckoutError(
            f"{context}: {error.message}",
            kind=kind,
            order_id=order_id,
            payment_id=payment_id,
            retryable=retryable,
            method=method,
        )
