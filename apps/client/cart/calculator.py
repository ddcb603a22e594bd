"""Cart totals - subtotal, tax, service charge and grand total."""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ranbow_schemas import CartTotals

from apps.client.config import settings
from apps.client.exceptions import OrderValidationError


def round_half_up(value: Decimal) -> int:
    """Round to the minor currency unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total(item: Any) -> int:
    """Price of one cart line. Rejects quantities below 1 and negative prices."""
    quantity = item.quantity
    unit_price = item.unit_price
    if quantity < 1:
        raise OrderValidationError(
            f"Quantity must be at least 1 for item {item.menu_item_id}",
            field="quantity",
        )
    if unit_price < 0:
        raise OrderValidationError(
            f"Unit price cannot be negative for item {item.menu_item_id}",
            field="unit_price",
        )
    return round_half_up(Decimal(unit_price) * quantity)


def calculate_totals(
    items: Iterable[Any],
    tax_rate: Decimal | None = None,
    service_charge_rate: Decimal | None = None,
) -> CartTotals:
    """
    Compute cart totals.

    Tax and service charge are independent percentages of the subtotal, each
    rounded on its own, so `total_amount == subtotal + tax + service_charge`
    holds exactly. The result does not depend on item order.

    Args:
        items: Cart lines (anything with menu_item_id, quantity, unit_price).
        tax_rate: Defaults to settings.TAX_RATE.
        service_charge_rate: Defaults to settings.SERVICE_CHARGE_RATE.

    Raises:
        OrderValidationError: If a line has quantity < 1 or a negative price.
    """
    tax_rate = settings.TAX_RATE if tax_rate is None else tax_rate
    service_charge_rate = (
        settings.SERVICE_CHARGE_RATE
        if service_charge_rate is None
        else service_charge_rate
    )

    subtotal = 0
    item_count = 0
    for item in items:
        subtotal += line_total(item)
        item_count += item.quantity

    tax = round_half_up(Decimal(subtotal) * tax_rate)
    service_charge = round_half_up(Decimal(subtotal) * service_charge_rate)

    return CartTotals(
        subtotal=subtotal,
        tax=tax,
        service_charge=service_charge,
        total_amount=subtotal + tax + service_charge,
        item_count=item_count,
    )
