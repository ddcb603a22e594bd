"""Cash gateway - records intent to settle in person."""

import logging
from datetime import UTC, datetime

from ranbow_schemas import Order, PaymentMethod, PaymentResult, PaymentStatus

from apps.client.gateways.base import generate_transaction_id
from apps.client.gateways.exceptions import PaymentConfigError

logger = logging.getLogger(__name__)


class CashGateway:
    """
    Cash payment gateway implementing the PaymentGateway protocol.

    No external call is made and the payment always succeeds immediately.
    The transaction id is minted locally; what gets recorded is the intent to
    pay at the counter, not a verified transfer.
    """

    @property
    def method(self) -> PaymentMethod:
        """The payment method this gateway settles."""
        return PaymentMethod.CASH

    @property
    def provider(self) -> str:
        """Short provider name used in logs and errors."""
        return "cash"

    async def process(self, order: Order, amount: int) -> PaymentResult:
        """Record a deferred in-person cash settlement."""
        if amount < 0:
            raise PaymentConfigError(
                f"Invalid cash amount: {amount}",
                provider=self.provider,
            )

        transaction_id = generate_transaction_id("CASH")
        logger.info(
            "Cash settlement recorded for order %s (txn=%s, amount=%d)",
            order.id,
            transaction_id,
            amount,
        )

        return PaymentResult(
            method=PaymentMethod.CASH,
            transaction_id=transaction_id,
            amount=amount,
            status=PaymentStatus.COMPLETED,
            provider_data={
                "settlement": "in_person",
                "table_number": order.table_number,
            },
            processed_at=datetime.now(UTC),
        )
