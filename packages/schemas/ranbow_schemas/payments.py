"""Payment schemas - payment records, gateway results and wallet reservations."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ranbow_schemas.orders import PaymentMethod, WireModel

# =============================================================================
# Enums
# =============================================================================


class PaymentStatus(str, Enum):
    """Payment processing status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class ReservationState(str, Enum):
    """State of a two-phase wallet reservation as reported by the provider."""

    RESERVED = "reserved"  # created, waiting for the payer to approve
    AUTHORIZED = "authorized"  # approved by the payer, not captured yet
    CAPTURED = "captured"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# =============================================================================
# Payment records
# =============================================================================


class Payment(WireModel):
    """Payment record bound to one order."""

    id: str = Field(validation_alias=AliasChoices("id", "paymentId"))
    order_id: str
    method: PaymentMethod = Field(
        validation_alias=AliasChoices("method", "paymentMethod")
    )
    amount: int
    status: PaymentStatus
    transaction_id: str | None = None
    provider_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str:
        return str(value)

    @field_validator("provider_data", mode="before")
    @classmethod
    def _default_provider_data(cls, value: Any) -> Any:
        return value or {}


class PaymentCreateRequest(WireModel):
    """Body of POST /orders/{id}/payments."""

    method: PaymentMethod


class PaymentConfirmRequest(WireModel):
    """Body of POST /payments/{id}/confirm."""

    transaction_id: str
    provider_data: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Gateway results
# =============================================================================


class PaymentResult(BaseModel):
    """Successful outcome of a gateway `process` call."""

    method: PaymentMethod
    transaction_id: str
    trade_no: str | None = Field(
        default=None, description="Client-minted identifier of this attempt"
    )
    amount: int
    status: PaymentStatus = PaymentStatus.COMPLETED
    provider_data: dict[str, Any] = Field(default_factory=dict)
    processed_at: datetime


class Reservation(BaseModel):
    """Provisional hold created by a two-phase wallet, not captured yet."""

    order_id: str
    transaction_id: str
    confirmation_handle: str = Field(
        description="Where the payer approves the hold (payment URL)"
    )
    trade_no: str
    amount: int
    currency: str
    reserved_at: datetime
    state: ReservationState = ReservationState.RESERVED
