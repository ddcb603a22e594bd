"""Payment gateway exceptions."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ranbow_schemas import Reservation


class PaymentError(Exception):
    """Base exception for payment gateway errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trade_no: str | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.trade_no = trade_no
        super().__init__(message)


class GatewayDeclined(PaymentError):
    """The provider declined the payment. The payer may retry or switch method."""

    retryable = True

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trade_no: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, provider, trade_no)
        self.code = code


PaymentDeclined = GatewayDeclined


class GatewayTimeout(PaymentError):
    """The provider did not answer in time. Outcome of the call is unknown."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trade_no: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, provider, trade_no)
        self.retryable = retryable


class GatewayUnavailable(PaymentError):
    """Transport or server failure reaching the provider."""

    retryable = True

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trade_no: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider, trade_no)
        self.status_code = status_code


class AmbiguousPending(PaymentError):
    """
    A two-phase wallet reservation exists but its capture outcome is unknown.

    Recovery is reconciliation against the provider, never a second reserve.
    """

    def __init__(
        self,
        message: str,
        reservation: "Reservation",
        provider: str | None = None,
    ) -> None:
        super().__init__(message, provider, reservation.trade_no)
        self.reservation = reservation


class PaymentConfigError(PaymentError):
    """Gateway misconfigured or request payload malformed."""


class CapabilityUnavailable(PaymentError):
    """The device or browser cannot pay with this method. Use another one."""


class AttestationFailed(PaymentError):
    """The payer did not pass the biometric/passcode gate. Prompt again."""

    retryable = True
