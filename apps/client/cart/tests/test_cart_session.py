"""Tests for CartSession and session stores."""

from pathlib import Path

import pytest
from ranbow_schemas import PaymentMethod

from apps.client.cart.session import CartSession, FileSessionStore, MemorySessionStore
from apps.client.exceptions import OrderValidationError


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def cart(store: MemorySessionStore) -> CartSession:
    return CartSession("session-1", store)


class TestCartMutations:
    """Tests for adding, updating and removing lines."""

    def test_add_item(self, cart: CartSession) -> None:
        item = cart.add_item("1", unit_price=250, quantity=2, name="Beef Noodles")

        assert item.quantity == 2
        assert len(cart.items) == 1
        assert cart.totals().subtotal == 500

    def test_same_item_and_requests_merge(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=250, quantity=1, special_requests="no onion")
        cart.add_item("1", unit_price=250, quantity=2, special_requests="no onion")

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_different_requests_stay_separate(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=250, special_requests="no onion")
        cart.add_item("1", unit_price=250, special_requests="extra spicy")
        cart.add_item("1", unit_price=250)

        assert len(cart.items) == 3

    def test_merge_caps_at_99(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10, quantity=90)
        cart.add_item("1", unit_price=10, quantity=20)

        assert cart.items[0].quantity == 99

    def test_add_zero_quantity_rejected(self, cart: CartSession) -> None:
        with pytest.raises(OrderValidationError):
            cart.add_item("1", unit_price=10, quantity=0)

    def test_add_negative_price_rejected(self, cart: CartSession) -> None:
        with pytest.raises(OrderValidationError):
            cart.add_item("1", unit_price=-1)

    def test_update_quantity(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10)

        updated = cart.update_item("1", 5)

        assert updated is not None
        assert updated.quantity == 5
        assert cart.totals().item_count == 5

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_update_to_zero_or_less_removes(
        self, cart: CartSession, quantity: int
    ) -> None:
        cart.add_item("1", unit_price=10)

        assert cart.update_item("1", quantity) is None
        assert cart.is_empty

    def test_update_over_99_rejected(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10)

        with pytest.raises(OrderValidationError):
            cart.update_item("1", 100)

    def test_update_missing_item(self, cart: CartSession) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            cart.update_item("404", 1)

        assert exc_info.value.field == "menu_item_id"

    def test_remove_item(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10)
        cart.add_item("2", unit_price=20)

        assert cart.remove_item("1") is True
        assert cart.remove_item("1") is False
        assert [item.menu_item_id for item in cart.items] == ["2"]

    def test_clear_keeps_table_number(self, cart: CartSession) -> None:
        cart.set_table_number("A12")
        cart.add_item("1", unit_price=10)

        cart.clear()

        assert cart.is_empty
        assert cart.table_number == "A12"

    def test_items_are_copies(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10)

        cart.items[0].quantity = 50

        assert cart.items[0].quantity == 1


class TestTableNumber:
    """Tests for table number validation."""

    @pytest.mark.parametrize("value", ["12", "A12", "b7", " C3 "])
    def test_valid(self, cart: CartSession, value: str) -> None:
        cart.set_table_number(value)

        assert cart.table_number == value.strip().upper()

    @pytest.mark.parametrize("value", ["", "AB12", "12A", "A", "A12345678901"])
    def test_invalid(self, cart: CartSession, value: str) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            cart.set_table_number(value)

        assert exc_info.value.field == "table_number"


class TestToDraft:
    """Tests for building an order draft from the cart."""

    def test_builds_draft(self, cart: CartSession) -> None:
        cart.set_table_number("A12")
        cart.add_item("1", unit_price=250, quantity=2)
        cart.add_item("2", unit_price=80)

        draft = cart.to_draft(PaymentMethod.LINE_PAY, special_requests="window seat")

        assert draft.table_number == "A12"
        assert draft.payment_method == PaymentMethod.LINE_PAY
        assert len(draft.items) == 2

    def test_empty_cart_rejected(self, cart: CartSession) -> None:
        cart.set_table_number("A12")

        with pytest.raises(OrderValidationError) as exc_info:
            cart.to_draft(PaymentMethod.CASH)

        assert exc_info.value.field == "items"

    def test_missing_table_rejected(self, cart: CartSession) -> None:
        cart.add_item("1", unit_price=10)

        with pytest.raises(OrderValidationError) as exc_info:
            cart.to_draft(PaymentMethod.CASH)

        assert exc_info.value.field == "table_number"


class TestPersistence:
    """Tests for restoring carts from a store."""

    def test_restore_from_memory_store(
        self, cart: CartSession, store: MemorySessionStore
    ) -> None:
        cart.set_table_number("B3")
        cart.add_item("1", unit_price=250, quantity=2, special_requests="no onion")

        restored = CartSession.restore("session-1", store)

        assert restored.table_number == "B3"
        assert restored.items == cart.items

    def test_restore_unknown_session_is_empty(self, store: MemorySessionStore) -> None:
        restored = CartSession.restore("nobody", store)

        assert restored.is_empty
        assert restored.table_number is None

    def test_reset_forgets_session(
        self, cart: CartSession, store: MemorySessionStore
    ) -> None:
        cart.set_table_number("B3")
        cart.add_item("1", unit_price=10)

        cart.reset()

        assert store.load("session-1") is None
        assert cart.table_number is None

    def test_file_store_roundtrip(self, tmp_path: Path) -> None:
        store = FileSessionStore(tmp_path)
        cart = CartSession("abc-123", store)
        cart.set_table_number("7")
        cart.add_item("9", unit_price=120, quantity=3, name="Dumplings")

        assert (tmp_path / "abc-123.json").exists()

        restored = CartSession.restore("abc-123", FileSessionStore(tmp_path))
        assert restored.table_number == "7"
        assert restored.items[0].name == "Dumplings"
        assert restored.totals().subtotal == 360

    def test_file_store_ignores_corrupt_file(self, tmp_path: Path) -> None:
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        assert FileSessionStore(tmp_path).load("broken") is None

    def test_file_store_rejects_path_like_ids(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            FileSessionStore(tmp_path).load("../etc/passwd")

    def test_only_items_and_table_are_persisted(
        self, cart: CartSession, store: MemorySessionStore
    ) -> None:
        cart.set_table_number("A1")
        cart.add_item("1", unit_price=10)

        assert set(store.load("session-1")) == {"tableNumber", "items"}
