"""Card gateway - ECPay all-in-one checkout with CheckMacValue signing."""

import hashlib
import hmac
import logging
import re
import urllib.parse
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import httpx
from ranbow_schemas import Order, PaymentMethod, PaymentResult, PaymentStatus

from apps.client.config import settings
from apps.client.gateways.base import TradeNumberFactory
from apps.client.gateways.exceptions import (
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentConfigError,
)

logger = logging.getLogger(__name__)

# .NET-style UrlEncode leaves these characters unescaped; ECPay signs that form
_ECPAY_UNESCAPE = {
    "%2d": "-",
    "%5f": "_",
    "%2e": ".",
    "%21": "!",
    "%2a": "*",
    "%28": "(",
    "%29": ")",
}

_TRADE_NO_PATTERN = re.compile(r"^[A-Za-z0-9]{1,20}$")


def generate_check_mac(params: Mapping[str, Any], hash_key: str, hash_iv: str) -> str:
    """
    Compute an ECPay CheckMacValue over a parameter set.

    Parameters are sorted by key (case-insensitive), wrapped with HashKey and
    HashIV, URL-encoded, lowercased, hashed with SHA-256 and upper-cased.
    Any existing CheckMacValue entry is ignored.

    Args:
        params: Form parameters to sign.
        hash_key: Merchant HashKey.
        hash_iv: Merchant HashIV.

    Returns:
        Upper-case hex SHA-256 digest.
    """
    pairs = sorted(
        ((key, value) for key, value in params.items() if key != "CheckMacValue"),
        key=lambda pair: pair[0].lower(),
    )
    query = "&".join(f"{key}={value}" for key, value in pairs)
    raw = f"HashKey={hash_key}&{query}&HashIV={hash_iv}"

    encoded = urllib.parse.quote_plus(raw).lower()
    for escaped, char in _ECPAY_UNESCAPE.items():
        encoded = encoded.replace(escaped, char)

    return hashlib.sha256(encoded.encode("utf-8")).hexdigest().upper()


def verify_check_mac(params: Mapping[str, Any], hash_key: str, hash_iv: str) -> bool:
    """Verify the CheckMacValue carried inside a parameter set."""
    received = str(params.get("CheckMacValue", ""))
    expected = generate_check_mac(params, hash_key, hash_iv)
    return hmac.compare_digest(received.upper(), expected)


def build_item_name(order: Order) -> str:
    """Summarize order items the way ECPay expects (`#`-separated names)."""
    names = [
        f"{item.name or item.menu_item_id} x {item.quantity}" for item in order.items
    ]
    if not names:
        return f"Order {order.id}"
    return "#".join(names)[:400]


class CardGateway:
    """
    Card gateway implementing the PaymentGateway protocol.

    Single-phase, redirect style: the signed checkout form is posted to the
    provider and the call blocks until the provider answers with a result
    code. In the browser this is a form redirect or iframe; here it is one
    HTTP round trip.

    Every call to `process` mints a fresh trade number, so a retry after a
    decline is never confused with the earlier attempt.

    API Reference: https://developers.ecpay.com.tw/?p=2862
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        merchant_id: str | None = None,
        hash_key: str | None = None,
        hash_iv: str | None = None,
        checkout_url: str | None = None,
        timeout: float | None = None,
        trade_no_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Initialize the card gateway.

        Args:
            http_client: Optional HTTP client for dependency injection (testing).
            merchant_id: ECPay MerchantID. Defaults to settings.
            hash_key: ECPay HashKey. Defaults to settings.
            hash_iv: ECPay HashIV. Defaults to settings.
            checkout_url: AIO checkout endpoint. Defaults to settings.
            timeout: Seconds to wait for the provider. Defaults to settings.
            trade_no_factory: Callable minting trade numbers.
        """
        self._timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = http_client is None
        self._merchant_id = merchant_id or settings.CARD_MERCHANT_ID
        self._hash_key = hash_key or settings.CARD_HASH_KEY
        self._hash_iv = hash_iv or settings.CARD_HASH_IV
        self._checkout_url = checkout_url or settings.CARD_CHECKOUT_URL
        self._new_trade_no = trade_no_factory or TradeNumberFactory(prefix="RB")

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def method(self) -> PaymentMethod:
        """The payment method this gateway settles."""
        return PaymentMethod.CREDIT_CARD

    @property
    def provider(self) -> str:
        """Short provider name used in logs and errors."""
        return "ecpay"

    # =========================================================================
    # Payload
    # =========================================================================

    def build_payload(self, order: Order, amount: int, trade_no: str) -> dict[str, str]:
        """
        Build the signed checkout form for one attempt.

        Raises:
            PaymentConfigError: If merchant settings are missing or the payload
                would be rejected by the provider.
        """
        if not (self._merchant_id and self._hash_key and self._hash_iv):
            raise PaymentConfigError(
                "Card gateway requires merchant id, hash key and hash IV",
                provider=self.provider,
                trade_no=trade_no,
            )
        if not isinstance(amount, int) or amount <= 0:
            raise PaymentConfigError(
                f"Card amount must be a positive integer, got {amount!r}",
                provider=self.provider,
                trade_no=trade_no,
            )
        if not _TRADE_NO_PATTERN.match(trade_no):
            raise PaymentConfigError(
                f"Malformed trade number: {trade_no!r}",
                provider=self.provider,
                trade_no=trade_no,
            )

        payload = {
            "MerchantID": self._merchant_id,
            "MerchantTradeNo": trade_no,
            "MerchantTradeDate": datetime.now(UTC).strftime("%Y/%m/%d %H:%M:%S"),
            "PaymentType": "aio",
            "TotalAmount": str(amount),
            "TradeDesc": f"Ranbow Restaurant Order {order.id}"[:200],
            "ItemName": build_item_name(order),
            "ReturnURL": settings.CARD_RETURN_URL,
            "ClientBackURL": settings.CARD_CLIENT_BACK_URL,
            "ChoosePayment": "Credit",
            "NeedExtraPaidInfo": "Y",
            "CustomField1": order.id,
            "EncryptType": "1",
        }
        payload["CheckMacValue"] = generate_check_mac(
            payload, self._hash_key, self._hash_iv
        )
        return payload

    # =========================================================================
    # Processing
    # =========================================================================

    async def process(self, order: Order, amount: int) -> PaymentResult:
        """Post the signed checkout form and wait for the provider's verdict."""
        trade_no = self._new_trade_no()
        payload = self.build_payload(order, amount, trade_no)

        logger.info(
            "Submitting card checkout for order %s (trade_no=%s, amount=%d)",
            order.id,
            trade_no,
            amount,
        )

        try:
            response = await self._client.post(
                self._checkout_url,
                data=payload,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(
                f"Card gateway timed out after {self._timeout}s",
                provider=self.provider,
                trade_no=trade_no,
            ) from e
        except httpx.RequestError as e:
            raise GatewayUnavailable(
                f"Card gateway request failed: {e}",
                provider=self.provider,
                trade_no=trade_no,
            ) from e

        if response.status_code >= 500:
            raise GatewayUnavailable(
                f"Card gateway error: {response.status_code}",
                provider=self.provider,
                trade_no=trade_no,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PaymentConfigError(
                f"Card gateway rejected the request: {response.status_code}",
                provider=self.provider,
                trade_no=trade_no,
            )

        result = self._parse_response(response, trade_no)

        if "CheckMacValue" in result and not verify_check_mac(
            result, self._hash_key, self._hash_iv
        ):
            raise PaymentConfigError(
                "Card gateway response failed CheckMacValue verification",
                provider=self.provider,
                trade_no=trade_no,
            )

        rtn_code = str(result.get("RtnCode", ""))
        if rtn_code != "1":
            message = result.get("RtnMsg") or "Card payment declined"
            logger.warning(
                "Card payment declined for order %s (trade_no=%s, code=%s): %s",
                order.id,
                trade_no,
                rtn_code,
                message,
            )
            raise GatewayDeclined(
                str(message),
                provider=self.provider,
                trade_no=trade_no,
                code=rtn_code or None,
            )

        transaction_id = str(result.get("TradeNo") or trade_no)
        return PaymentResult(
            method=PaymentMethod.CREDIT_CARD,
            transaction_id=transaction_id,
            trade_no=trade_no,
            amount=amount,
            status=PaymentStatus.COMPLETED,
            provider_data={
                "merchant_trade_no": trade_no,
                "payment_type": result.get("PaymentType", ""),
                "card4no": result.get("card4no", ""),
                "auth_code": result.get("auth_code", ""),
            },
            processed_at=datetime.now(UTC),
        )

    def _parse_response(
        self, response: httpx.Response, trade_no: str
    ) -> dict[str, Any]:
        """Parse a JSON or form-encoded provider response."""
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                data = response.json()
            except ValueError as e:
                raise GatewayUnavailable(
                    "Card gateway returned a malformed JSON body",
                    provider=self.provider,
                    trade_no=trade_no,
                    status_code=response.status_code,
                ) from e
            if not isinstance(data, dict):
                raise PaymentConfigError(
                    "Unexpected card gateway response shape",
                    provider=self.provider,
                    trade_no=trade_no,
                )
            return data
        return dict(urllib.parse.parse_qsl(response.text, keep_blank_values=True))
