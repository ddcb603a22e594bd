"""
Backend order/payment REST API client.

Wraps the endpoints the checkout and sync flows depend on. Transport errors
and 5xx responses are retried with exponential backoff; 4xx responses are
raised immediately. Responses may come bare or wrapped in a
`{"success": ..., "data": ...}` envelope.
"""

import asyncio
import logging
from typing import Any

import httpx
from ranbow_schemas import (
    Order,
    OrderCancelRequest,
    OrderDraft,
    OrderStatus,
    Payment,
    PaymentConfirmRequest,
    PaymentCreateRequest,
    PaymentMethod,
    StaffDashboard,
    StaffOverview,
)

from apps.client.config import settings
from apps.client.exceptions import NetworkError, OrderAPIError

logger = logging.getLogger(__name__)


def unwrap_envelope(payload: Any) -> Any:
    """
    Return the data part of a backend response.

    Raises:
        OrderAPIError: If an envelope reports `success: false`.
    """
    if isinstance(payload, dict) and "success" in payload:
        if not payload.get("success"):
            message = payload.get("message") or payload.get("error") or "Request failed"
            raise OrderAPIError(str(message), response_body=str(payload))
        return payload.get("data")
    return payload


class OrderAPIClient:
    """
    Async client for the restaurant backend.

    Usage:
        async with OrderAPIClient(auth_token=token) as api:
            order = await api.create_order(draft, idempotency_key=key)
            payment = await api.create_payment(order.id, draft.payment_method)
    """

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        auth_token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff_base: float | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            base_url: Backend base URL, e.g. http://localhost:8081/api.
            http_client: Optional HTTP client for dependency injection (testing).
            auth_token: Bearer token sent with every request.
            timeout: Per-request timeout in seconds.
            max_retries: Attempts for transport errors and 5xx responses.
            retry_backoff_base: First backoff delay; doubles every attempt.
        """
        self._base_url = (base_url or settings.ORDER_API_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.ORDER_API_TIMEOUT_SECONDS
        self._client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = http_client is None
        self._auth_token = auth_token
        self.max_retries = (
            max_retries if max_retries is not None else settings.ORDER_API_MAX_RETRIES
        )
        self.retry_backoff_base = (
            retry_backoff_base
            if retry_backoff_base is not None
            else settings.ORDER_API_RETRY_BACKOFF_BASE
        )

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "OrderAPIClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def set_auth_token(self, token: str | None) -> None:
        self._auth_token = token

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(
        self,
        draft: OrderDraft,
        customer_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Order:
        """POST /orders."""
        body = draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        if customer_id is not None:
            body["customerId"] = customer_id

        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        data = await self._request("POST", "/orders", json=body, headers=headers)
        return Order.model_validate(data)

    async def get_order(self, order_id: str) -> Order:
        """GET /orders/{id}."""
        data = await self._request("GET", f"/orders/{order_id}", order_id=order_id)
        return Order.model_validate(data)

    async def list_orders(self, customer_id: str | None = None) -> list[Order]:
        """GET /orders, optionally filtered by customer."""
        params = {"customerId": customer_id} if customer_id else None
        data = await self._request("GET", "/orders", params=params)
        return [Order.model_validate(item) for item in data or []]

    async def cancel_order(self, order_id: str, reason: str) -> Order:
        """POST /orders/{id}/cancel."""
        body = OrderCancelRequest(reason=reason).model_dump(by_alias=True)
        data = await self._request(
            "POST", f"/orders/{order_id}/cancel", json=body, order_id=order_id
        )
        return Order.model_validate(data)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        """PUT /orders/{id}/status."""
        data = await self._request(
            "PUT",
            f"/orders/{order_id}/status",
            json={"status": status.value},
            order_id=order_id,
        )
        return Order.model_validate(data)

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_payment(self, order_id: str, method: PaymentMethod) -> Payment:
        """POST /orders/{id}/payments."""
        body = PaymentCreateRequest(method=method).model_dump(
            mode="json", by_alias=True
        )
        data = await self._request(
            "POST", f"/orders/{order_id}/payments", json=body, order_id=order_id
        )
        return Payment.model_validate(data)

    async def confirm_payment(
        self,
        payment_id: str,
        transaction_id: str,
        provider_data: dict[str, Any] | None = None,
    ) -> Payment:
        """POST /payments/{id}/confirm."""
        body = PaymentConfirmRequest(
            transaction_id=transaction_id,
            provider_data=provider_data or {},
        ).model_dump(mode="json", by_alias=True)
        data = await self._request("POST", f"/payments/{payment_id}/confirm", json=body)
        return Payment.model_validate(data)

    async def get_payment(self, payment_id: str) -> Payment:
        """GET /payments/{id}."""
        data = await self._request("GET", f"/payments/{payment_id}")
        return Payment.model_validate(data)

    # =========================================================================
    # Staff
    # =========================================================================

    async def get_staff_overview(self) -> StaffOverview:
        """GET /staff/overview."""
        data = await self._request("GET", "/staff/overview")
        return StaffOverview.model_validate(data or {})

    async def get_staff_dashboard(self, staff_id: str) -> StaffDashboard:
        """GET /staff/dashboard/{staffId}."""
        data = await self._request("GET", f"/staff/dashboard/{staff_id}")
        payload = dict(data or {})
        payload.setdefault("staffId", staff_id)
        return StaffDashboard.model_validate(payload)

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        order_id: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make an HTTP request with retry logic and unwrap the response.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to the base URL
            order_id: Order the call concerns, attached to raised errors
            **kwargs: Additional arguments passed to httpx

        Returns:
            Decoded response data, envelope removed

        Raises:
            OrderAPIError: If the backend answers with a 4xx status or an
                unsuccessful envelope
            NetworkError: If the request still fails after retries
        """
        headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"

        url = f"{self._base_url}{path}"
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(self.max_retries):
            try:
                response = await self._client.request(
                    method, url, headers=headers, timeout=self._timeout, **kwargs
                )
            except httpx.RequestError as e:
                last_error = e
                last_status = None
            else:
                if response.status_code < 400:
                    try:
                        payload = response.json() if response.content else None
                    except ValueError as e:
                        raise OrderAPIError(
                            f"{method} {path} returned a non-JSON body",
                            order_id=order_id,
                            status_code=response.status_code,
                            response_body=response.text[:500],
                        ) from e
                    return unwrap_envelope(payload)

                if response.status_code < 500:
                    raise OrderAPIError(
                        f"{method} {path} failed: {response.status_code} "
                        f"{self._error_message(response)}",
                        order_id=order_id,
                        status_code=response.status_code,
                        response_body=response.text,
                    )

                last_error = httpx.HTTPStatusError(
                    f"Server error {response.status_code}",
                    request=response.request,
                    response=response,
                )
                last_status = response.status_code

            if attempt < self.max_retries - 1:
                backoff = self.retry_backoff_base * (2**attempt)
                logger.warning(
                    "Order API %s %s failed (attempt %d/%d), retry in %.1fs: %s",
                    method,
                    path,
                    attempt + 1,
                    self.max_retries,
                    backoff,
                    str(last_error),
                )
                await asyncio.sleep(backoff)

        raise NetworkError(
            f"{method} {path} failed after {self.max_retries} attempts: {last_error}",
            order_id=order_id,
            status_code=last_status,
        ) from last_error

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)
