"""Order schemas - data contracts shared by checkout, order views and sync."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# =============================================================================
# Base
# =============================================================================


class WireModel(BaseModel):
    """Base for models exchanged with the backend (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Enums
# =============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Older backend builds and the staff surface use a second vocabulary.
LEGACY_STATUS_ALIASES: dict[str, OrderStatus] = {
    "PENDING": OrderStatus.PENDING_PAYMENT,
    "DELIVERED": OrderStatus.COMPLETED,
}


def parse_order_status(value: Any) -> OrderStatus:
    """Parse a raw status value, folding legacy names onto the canonical set."""
    if isinstance(value, OrderStatus):
        return value
    raw = str(value).strip().upper()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    return OrderStatus(raw)


class PaymentMethod(str, Enum):
    """
    Payment methods the backend records.

    Checkout has a gateway for CASH, CREDIT_CARD, LINE_PAY and APPLE_PAY. The
    others appear on orders taken through other channels and are display only.
    """

    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    MOBILE_PAYMENT = "MOBILE_PAYMENT"
    LINE_PAY = "LINE_PAY"
    APPLE_PAY = "APPLE_PAY"
    GOOGLE_PAY = "GOOGLE_PAY"


# =============================================================================
# Cart
# =============================================================================


class CartItem(WireModel):
    """A line in the client-held cart."""

    menu_item_id: str
    quantity: int = Field(ge=1, le=99)
    unit_price: int = Field(ge=0, description="Minor currency units")
    special_requests: str | None = Field(default=None, max_length=200)
    name: str = ""

    @field_validator("menu_item_id", mode="before")
    @classmethod
    def _coerce_menu_item_id(cls, value: Any) -> str:
        return str(value)


class CartTotals(BaseModel):
    """Computed cart totals, all in minor currency units."""

    subtotal: int
    tax: int
    service_charge: int
    total_amount: int
    item_count: int


class OrderDraft(WireModel):
    """Checkout input that has not been persisted yet."""

    table_number: str = Field(pattern=r"^[A-Z]?\d+$", max_length=10)
    payment_method: PaymentMethod
    special_requests: str | None = Field(default=None, max_length=200)
    items: list[CartItem] = Field(min_length=1)


# =============================================================================
# Orders
# =============================================================================


class OrderItem(WireModel):
    """Line item of a persisted order."""

    menu_item_id: str
    name: str = ""
    quantity: int
    unit_price: int
    total_price: int | None = None
    special_requests: str | None = None

    @field_validator("menu_item_id", mode="before")
    @classmethod
    def _coerce_menu_item_id(cls, value: Any) -> str:
        return str(value)


class Order(WireModel):
    """An order as stored by the backend."""

    id: str = Field(validation_alias=AliasChoices("id", "orderId"))
    customer_id: str | None = None
    items: list[OrderItem] = Field(default_factory=list)
    subtotal: int
    tax: int
    service_charge: int
    total_amount: int
    status: OrderStatus
    table_number: str | None = None
    payment_method: PaymentMethod | None = None
    special_requests: str | None = None
    created_at: datetime
    updated_at: datetime
    estimated_time: int | None = Field(
        default=None, description="Estimated minutes until ready"
    )

    @field_validator("id", "customer_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> OrderStatus:
        return parse_order_status(value)


class OrderCancelRequest(WireModel):
    """Body of POST /orders/{id}/cancel."""

    reason: str = Field(min_length=1, max_length=200)
