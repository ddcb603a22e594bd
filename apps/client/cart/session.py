"""
Client-held cart state, owned per session.

A CartSession holds the cart lines and the selected table number. Only those
two things are persisted, through a SessionStore, so a reload or a second
view of the same session picks the cart back up.
"""

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError
from ranbow_schemas import CartItem, CartTotals, OrderDraft, PaymentMethod

from apps.client.cart.calculator import calculate_totals
from apps.client.config import settings
from apps.client.exceptions import OrderValidationError

logger = logging.getLogger(__name__)

MAX_QUANTITY = 99
TABLE_NUMBER_PATTERN = re.compile(r"^[A-Z]?\d+$")
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class SessionStore(Protocol):
    """Persistence for cart sessions, keyed by session id."""

    def load(self, session_id: str) -> dict[str, Any] | None: ...

    def save(self, session_id: str, data: dict[str, Any]) -> None: ...

    def delete(self, session_id: str) -> None: ...


class MemorySessionStore:
    """Keeps sessions in a dict. For tests and single-process use."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def load(self, session_id: str) -> dict[str, Any] | None:
        data = self._data.get(session_id)
        return json.loads(json.dumps(data)) if data is not None else None

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._data[session_id] = json.loads(json.dumps(data))

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)


class FileSessionStore:
    """One JSON file per session id under a directory."""

    def __init__(self, directory: Path | str | None = None) -> None:
        self.directory = Path(directory or settings.SESSION_STORE_DIR)

    def _path(self, session_id: str) -> Path:
        if not _SESSION_ID_PATTERN.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{session_id}.json"

    def load(self, session_id: str) -> dict[str, Any] | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cart session file %s", path)
            return None

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        path = self._path(session_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(path)

    def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)


def _same_line(item: CartItem, menu_item_id: str, special_requests: str | None) -> bool:
    return item.menu_item_id == menu_item_id and (item.special_requests or None) == (
        special_requests or None
    )


class CartSession:
    """
    Cart for one session.

    Lines are keyed by menu item and special requests: adding the same item
    with the same requests bumps the quantity (capped at 99) instead of adding
    a second line.
    """

    def __init__(
        self,
        session_id: str,
        store: SessionStore | None = None,
        totals_calculator: Callable[..., CartTotals] = calculate_totals,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._calculate = totals_calculator
        self._items: list[CartItem] = []
        self._table_number: str | None = None

    @classmethod
    def restore(cls, session_id: str, store: SessionStore) -> "CartSession":
        """Load a session from the store, or start an empty one."""
        session = cls(session_id, store)
        data = store.load(session_id)
        if data:
            try:
                session._items = [
                    CartItem.model_validate(item) for item in data.get("items", [])
                ]
            except ValidationError:
                logger.warning(
                    "Dropping invalid persisted cart for session %s", session_id
                )
                session._items = []
            table_number = data.get("tableNumber")
            if table_number and TABLE_NUMBER_PATTERN.match(str(table_number)):
                session._table_number = str(table_number)
        return session

    # =========================================================================
    # State
    # =========================================================================

    @property
    def items(self) -> list[CartItem]:
        return [item.model_copy() for item in self._items]

    @property
    def table_number(self) -> str | None:
        return self._table_number

    @property
    def is_empty(self) -> bool:
        return not self._items

    def totals(self) -> CartTotals:
        return self._calculate(self._items)

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_item(
        self,
        menu_item_id: str,
        unit_price: int,
        quantity: int = 1,
        special_requests: str | None = None,
        name: str = "",
    ) -> CartItem:
        """Add a line, merging with an existing identical line."""
        if quantity < 1:
            raise OrderValidationError(
                "Quantity must be at least 1", field="quantity"
            )

        menu_item_id = str(menu_item_id)
        for index, item in enumerate(self._items):
            if _same_line(item, menu_item_id, special_requests):
                merged = item.model_copy(
                    update={"quantity": min(MAX_QUANTITY, item.quantity + quantity)}
                )
                self._items[index] = merged
                self._persist()
                return merged

        try:
            item = CartItem(
                menu_item_id=menu_item_id,
                quantity=min(MAX_QUANTITY, quantity),
                unit_price=unit_price,
                special_requests=special_requests or None,
                name=name,
            )
        except ValidationError as e:
            raise OrderValidationError(f"Invalid cart item: {e}") from e

        self._items.append(item)
        self._persist()
        return item

    def update_item(
        self,
        menu_item_id: str,
        quantity: int,
        special_requests: str | None = None,
    ) -> CartItem | None:
        """Set a line's quantity. Zero or less removes the line."""
        menu_item_id = str(menu_item_id)
        for index, item in enumerate(self._items):
            if not _same_line(item, menu_item_id, special_requests):
                continue
            if quantity <= 0:
                del self._items[index]
                self._persist()
                return None
            if quantity > MAX_QUANTITY:
                raise OrderValidationError(
                    f"Quantity cannot exceed {MAX_QUANTITY}", field="quantity"
                )
            updated = item.model_copy(update={"quantity": quantity})
            self._items[index] = updated
            self._persist()
            return updated

        raise OrderValidationError(
            f"Item {menu_item_id} is not in the cart", field="menu_item_id"
        )

    def remove_item(
        self, menu_item_id: str, special_requests: str | None = None
    ) -> bool:
        menu_item_id = str(menu_item_id)
        before = len(self._items)
        self._items = [
            item
            for item in self._items
            if not _same_line(item, menu_item_id, special_requests)
        ]
        removed = len(self._items) != before
        if removed:
            self._persist()
        return removed

    def clear(self) -> None:
        """Empty the cart. The table number is kept for the next order."""
        self._items = []
        self._persist()

    def set_table_number(self, table_number: str) -> None:
        table_number = table_number.strip().upper()
        if len(table_number) > 10 or not TABLE_NUMBER_PATTERN.match(table_number):
            raise OrderValidationError(
                f"Invalid table number: {table_number!r}", field="table_number"
            )
        self._table_number = table_number
        self._persist()

    def reset(self) -> None:
        """Forget everything for this session (logout)."""
        self._items = []
        self._table_number = None
        if self._store is not None:
            self._store.delete(self.session_id)

    # =========================================================================
    # Checkout
    # =========================================================================

    def to_draft(
        self,
        payment_method: PaymentMethod,
        special_requests: str | None = None,
    ) -> OrderDraft:
        """Build an order draft from the cart."""
        if not self._items:
            raise OrderValidationError("Cart is empty", field="items")
        if not self._table_number:
            raise OrderValidationError(
                "Table number is required", field="table_number"
            )
        try:
            return OrderDraft(
                table_number=self._table_number,
                payment_method=payment_method,
                special_requests=special_requests or None,
                items=self.items,
            )
        except ValidationError as e:
            raise OrderValidationError(f"Invalid order draft: {e}") from e

    def _persist(self) -> None:
        if self._store is None:
            return
        self._store.save(
            self.session_id,
            {
                "tableNumber": self._table_number,
                "items": [
                    item.model_dump(mode="json", by_alias=True) for item in self._items
                ],
            },
        )
        logger.debug(
            "Saved cart session %s (%d lines)", self.session_id, len(self._items)
        )
