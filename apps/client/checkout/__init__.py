"""Checkout - cart to paid order."""

from apps.client.checkout.orchestrator import (
    CheckoutError,
    CheckoutErrorKind,
    CheckoutOrchestrator,
    CheckoutResult,
    CheckoutState,
    idempotency_key,
)

__all__ = [
    "CheckoutError",
    "CheckoutErrorKind",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "CheckoutState",
    "idempotency_key",
]
