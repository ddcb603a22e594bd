"""Ranbow Schemas - Pydantic models for the ordering data contracts."""

from ranbow_schemas.orders import (
    LEGACY_STATUS_ALIASES,
    CartItem,
    CartTotals,
    Order,
    OrderCancelRequest,
    OrderDraft,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    WireModel,
    parse_order_status,
)
from ranbow_schemas.payments import (
    Payment,
    PaymentConfirmRequest,
    PaymentCreateRequest,
    PaymentResult,
    PaymentStatus,
    Reservation,
    ReservationState,
)
from ranbow_schemas.staff import StaffDashboard, StaffOverview

__all__ = [
    # Orders
    "LEGACY_STATUS_ALIASES",
    "CartItem",
    "CartTotals",
    "Order",
    "OrderCancelRequest",
    "OrderDraft",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "WireModel",
    "parse_order_status",
    # Payments
    "Payment",
    "PaymentConfirmRequest",
    "PaymentCreateRequest",
    "PaymentResult",
    "PaymentStatus",
    "Reservation",
    "ReservationState",
    # Staff
    "StaffDashboard",
    "StaffOverview",
]
