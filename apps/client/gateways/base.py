"""Base payment gateway protocol - interface for all payment integrations."""

import secrets
import string
import threading
import time
from typing import Protocol, runtime_checkable

from ranbow_schemas import Order, PaymentMethod, PaymentResult

_TRADE_NO_ALPHABET = string.ascii_uppercase + string.digits


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Protocol defining the interface for payment gateway integrations.

    All gateways (Cash, Card, two-phase wallet, device wallet, Mock) must
    implement this interface so checkout does not care which one it talks to.
    """

    @property
    def method(self) -> PaymentMethod:
        """The payment method this gateway settles."""
        ...

    @property
    def provider(self) -> str:
        """Short provider name used in logs and errors."""
        ...

    async def process(self, order: Order, amount: int) -> PaymentResult:
        """
        Take payment for an order.

        Args:
            order: The persisted order being paid.
            amount: Amount to charge in minor currency units. Must equal
                order.total_amount.

        Returns:
            Result with the provider transaction id.

        Raises:
            GatewayDeclined: If the provider declined the payment.
            GatewayTimeout: If the provider did not answer in time.
            PaymentConfigError: If the gateway or payload is invalid.
            PaymentError: Any other gateway-specific failure.
        """
        ...


class TradeNumberFactory:
    """
    Mints trade numbers: prefix + millisecond timestamp + random suffix.

    A trade number identifies one payment attempt. Numbers handed out by a
    factory never repeat, so a retry after a failure always gets a new one.
    """

    def __init__(self, prefix: str = "RB", suffix_length: int = 4) -> None:
        self.prefix = prefix
        self.suffix_length = suffix_length
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            while True:
                suffix = "".join(
                    secrets.choice(_TRADE_NO_ALPHABET)
                    for _ in range(self.suffix_length)
                )
                trade_no = f"{self.prefix}{int(time.time() * 1000)}{suffix}"
                if trade_no not in self._issued:
                    self._issued.add(trade_no)
                    return trade_no


def generate_transaction_id(prefix: str = "TXN") -> str:
    """Generate a locally-minted transaction id."""
    return f"{prefix}-{secrets.token_hex(4).upper()}"
