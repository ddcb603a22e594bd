"""Device-attested wallet gateway - Apple Pay style capability, attest, authorize."""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel
from ranbow_schemas import Order, PaymentMethod, PaymentResult, PaymentStatus

from apps.client.config import settings
from apps.client.gateways.base import TradeNumberFactory
from apps.client.gateways.exceptions import (
    AttestationFailed,
    CapabilityUnavailable,
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentConfigError,
)

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITY_TIMEOUT = 5.0
DEFAULT_ATTESTATION_TIMEOUT = 120.0


class DevicePaymentRequest(BaseModel):
    """What the payer is shown on the device payment sheet."""

    merchant_identifier: str
    display_name: str
    country_code: str
    currency_code: str
    total_label: str
    amount: int
    trade_no: str
    supported_networks: list[str] = ["visa", "masterCard", "jcb", "amex"]


@runtime_checkable
class DevicePaymentPlatform(Protocol):
    """
    The platform payment-session API (browser or native wallet sheet).

    Implementations bridge to whatever runs on the payer's device.
    """

    async def can_make_payments(self, merchant_identifier: str) -> bool:
        """Whether this device can pay with the wallet for this merchant."""
        ...

    async def request_attestation(self, request: DevicePaymentRequest) -> str | None:
        """
        Show the payment sheet and gate it on biometric or passcode checks.

        Returns:
            An opaque payment token, or None if the payer cancelled or failed
            the check.
        """
        ...


class DeviceWalletGateway:
    """
    Device-attested wallet gateway implementing the PaymentGateway protocol.

    Three phases:
        1. Capability: the device must support the wallet. A negative answer
           or a timeout is fatal for this method; callers fall back to
           another payment method. Never retried.
        2. Attestation: the payer confirms on the device. A rejection is
           user-recoverable and surfaces as AttestationFailed.
        3. Authorization: the token is sent to the merchant processor. A
           decline is recoverable; each `process` call uses a fresh trade
           number.
    """

    def __init__(
        self,
        platform: DevicePaymentPlatform | None = None,
        http_client: httpx.AsyncClient | None = None,
        merchant_identifier: str | None = None,
        display_name: str | None = None,
        country_code: str | None = None,
        processor_url: str | None = None,
        currency: str | None = None,
        timeout: float | None = None,
        capability_timeout: float = DEFAULT_CAPABILITY_TIMEOUT,
        attestation_timeout: float = DEFAULT_ATTESTATION_TIMEOUT,
        trade_no_factory: Callable[[], str] | None = None,
    ) -> None:
        self._platform = platform
        self._timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = http_client is None
        self._merchant_identifier = (
            merchant_identifier or settings.DEVICE_WALLET_MERCHANT_ID
        )
        self._display_name = display_name or settings.DEVICE_WALLET_DISPLAY_NAME
        self._country_code = country_code or settings.DEVICE_WALLET_COUNTRY_CODE
        self._processor_url = processor_url or settings.DEVICE_WALLET_PROCESSOR_URL
        self._currency = currency or settings.CURRENCY
        self._capability_timeout = capability_timeout
        self._attestation_timeout = attestation_timeout
        self._new_trade_no = trade_no_factory or TradeNumberFactory(prefix="AP")

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def method(self) -> PaymentMethod:
        return PaymentMethod.APPLE_PAY

    @property
    def provider(self) -> str:
        return "applepay"

    async def is_available(self) -> bool:
        """Capability phase, as a plain yes/no for UIs deciding what to offer."""
        try:
            await self.check_capability()
        except CapabilityUnavailable:
            return False
        return True

    async def process(self, order: Order, amount: int) -> PaymentResult:
        if not isinstance(amount, int) or amount <= 0:
            raise PaymentConfigError(
                f"Device wallet amount must be a positive integer, got {amount!r}",
                provider=self.provider,
            )

        await self.check_capability()

        trade_no = self._new_trade_no()
        request = DevicePaymentRequest(
            merchant_identifier=self._merchant_identifier,
            display_name=self._display_name,
            country_code=self._country_code,
            currency_code=self._currency,
            total_label=f"{self._display_name} - Order {order.id}",
            amount=amount,
            trade_no=trade_no,
        )
        token = await self.attest(request)
        return await self.authorize(order, request, token)

    # =========================================================================
    # Phases
    # =========================================================================

    async def check_capability(self) -> None:
        """Raise CapabilityUnavailable unless the device can pay."""
        if self._platform is None:
            raise CapabilityUnavailable(
                "No device payment platform is attached", provider=self.provider
            )

        try:
            supported = await asyncio.wait_for(
                self._platform.can_make_payments(self._merchant_identifier),
                timeout=self._capability_timeout,
            )
        except TimeoutError as e:
            raise CapabilityUnavailable(
                f"Device capability check timed out after {self._capability_timeout}s",
                provider=self.provider,
            ) from e

        if not supported:
            logger.info("Device wallet not supported on this device")
            raise CapabilityUnavailable(
                "This device cannot pay with the wallet", provider=self.provider
            )

    async def attest(self, request: DevicePaymentRequest) -> str:
        """Ask the payer to approve on the device; return the payment token."""
        if self._platform is None:
            raise CapabilityUnavailable(
                "No device payment platform is attached",
                provider=self.provider,
                trade_no=request.trade_no,
            )

        try:
            token = await asyncio.wait_for(
                self._platform.request_attestation(request),
                timeout=self._attestation_timeout,
            )
        except TimeoutError as e:
            raise AttestationFailed(
                "Payer did not complete device verification in time",
                provider=self.provider,
                trade_no=request.trade_no,
            ) from e

        if not token:
            logger.info("Device attestation rejected (trade_no=%s)", request.trade_no)
            raise AttestationFailed(
                "Device verification was cancelled or failed",
                provider=self.provider,
                trade_no=request.trade_no,
            )
        return token

    async def authorize(
        self, order: Order, request: DevicePaymentRequest, token: str
    ) -> PaymentResult:
        """Send the attested token to the merchant processor."""
        trade_no = request.trade_no
        body = {
            "paymentToken": token,
            "orderId": order.id,
            "tradeNo": trade_no,
            "amount": request.amount,
            "currency": request.currency_code,
            "merchantIdentifier": request.merchant_identifier,
        }

        try:
            response = await self._client.post(
                self._processor_url, json=body, timeout=self._timeout
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(
                f"Device wallet processor timed out after {self._timeout}s",
                provider=self.provider,
                trade_no=trade_no,
            ) from e
        except httpx.RequestError as e:
            raise GatewayUnavailable(
                f"Device wallet processor request failed: {e}",
                provider=self.provider,
                trade_no=trade_no,
            ) from e

        if response.status_code >= 500:
            raise GatewayUnavailable(
                f"Device wallet processor error: {response.status_code}",
                provider=self.provider,
                trade_no=trade_no,
                status_code=response.status_code,
            )

        try:
            data: dict[str, Any] = response.json() if response.content else {}
        except ValueError as e:
            raise GatewayUnavailable(
                f"Device wallet processor returned a non-JSON body "
                f"({response.status_code})",
                provider=self.provider,
                trade_no=trade_no,
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise PaymentConfigError(
                "Unexpected device wallet processor response shape",
                provider=self.provider,
                trade_no=trade_no,
            )
        status = str(data.get("status", "")).upper()

        if response.status_code >= 400 or status not in ("APPROVED", "SUCCESS"):
            code = data.get("declineCode") or str(response.status_code)
            logger.warning(
                "Device wallet payment declined for order %s (trade_no=%s, code=%s)",
                order.id,
                trade_no,
                code,
            )
            raise GatewayDeclined(
                data.get("message") or "Device wallet payment declined",
                provider=self.provider,
                trade_no=trade_no,
                code=code,
            )

        return PaymentResult(
            method=PaymentMethod.APPLE_PAY,
            transaction_id=str(data.get("transactionId") or trade_no),
            trade_no=trade_no,
            amount=request.amount,
            status=PaymentStatus.COMPLETED,
            provider_data={
                "merchant_identifier": request.merchant_identifier,
                "network": data.get("network", ""),
            },
            processed_at=datetime.now(UTC),
        )
