"""Payment gateways - one implementation per payment method."""

from typing import Any

from ranbow_schemas import PaymentMethod

from apps.client.gateways.base import PaymentGateway
from apps.client.gateways.card import CardGateway
from apps.client.gateways.cash import CashGateway
from apps.client.gateways.mock import MockGateway
from apps.client.gateways.wallet_device import (
    DevicePaymentPlatform,
    DevicePaymentRequest,
    DeviceWalletGateway,
)
from apps.client.gateways.wallet_two_phase import (
    ReservationLedger,
    TwoPhaseWalletGateway,
)

# Methods with a gateway implementation
CHECKOUT_METHODS = (
    PaymentMethod.CASH,
    PaymentMethod.CREDIT_CARD,
    PaymentMethod.LINE_PAY,
    PaymentMethod.APPLE_PAY,
)


def get_gateway(
    method: PaymentMethod, mock: bool = False, **kwargs: Any
) -> PaymentGateway:
    """
    Get a payment gateway instance for the specified payment method.

    This is the main entry point for obtaining gateways. Use this factory
    function rather than instantiating gateways directly.

    Args:
        method: The payment method to get a gateway for.
        mock: If True, return a MockGateway standing in for that method.
        **kwargs: Additional arguments passed to the gateway constructor.

    Returns:
        A gateway instance implementing the PaymentGateway protocol.

    Raises:
        ValueError: If the method is not supported.

    Example:
        gateway = get_gateway(PaymentMethod.CASH)
        result = await gateway.process(order, order.total_amount)

        # Device wallet with a platform bridge
        gateway = get_gateway(PaymentMethod.APPLE_PAY, platform=bridge)
    """
    if mock:
        return MockGateway(method=method, **kwargs)
    elif method == PaymentMethod.CASH:
        return CashGateway()
    elif method == PaymentMethod.CREDIT_CARD:
        return CardGateway(**kwargs)
    elif method == PaymentMethod.LINE_PAY:
        return TwoPhaseWalletGateway(**kwargs)
    elif method == PaymentMethod.APPLE_PAY:
        return DeviceWalletGateway(**kwargs)
    else:
        supported = ", ".join(m.value for m in CHECKOUT_METHODS)
        raise ValueError(
            f"Unsupported payment method: {method}. Supported: {supported}"
        )


__all__ = [
    "CHECKOUT_METHODS",
    "CardGateway",
    "CashGateway",
    "DevicePaymentPlatform",
    "DevicePaymentRequest",
    "DeviceWalletGateway",
    "MockGateway",
    "PaymentGateway",
    "ReservationLedger",
    "TwoPhaseWalletGateway",
    "get_gateway",
]
