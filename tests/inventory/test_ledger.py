"""
Tests for InventoryLedger and StockMovement.
"""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from services.inventory.app.aggregate import InventoryLedger, MovementType, StockMovement
from services.inventory.app.errors import (
    ErrorKind,
    InsufficientStock,
    InvalidQuantity,
    OverRelease,
)


@pytest.fixture
def ledger():
    return InventoryLedger(uuid4(), "Widget", "WID-001", quantity_available=10)


class TestReserve:
    def test_moves_quantity_to_reserved(self, ledger):
        ledger.reserve(4)

        assert ledger.quantity_available == 6
        assert ledger.quantity_reserved == 4
        assert ledger.total_quantity == 10

    def test_exact_available_quantity_succeeds(self, ledger):
        ledger.reserve(10)

        assert ledger.quantity_available == 0
        assert ledger.quantity_reserved == 10

    def test_insufficient_stock_leaves_ledger_unchanged(self, ledger):
        with pytest.raises(InsufficientStock) as exc_info:
            ledger.reserve(11)

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_STOCK
        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert ledger.quantity_available == 10
        assert ledger.quantity_reserved == 0

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_is_rejected(self, ledger, quantity):
        with pytest.raises(InvalidQuantity):
            ledger.reserve(quantity)
        assert ledger.quantity_available == 10

    def test_non_positive_quantity_wins_over_insufficient_stock(self):
        empty = InventoryLedger(uuid4(), quantity_available=0)
        with pytest.raises(InvalidQuantity):
            empty.reserve(0)


class TestReleaseAndConfirm:
    def test_release_returns_quantity_to_available(self, ledger):
        ledger.reserve(4)
        ledger.release_reservation(4)

        assert ledger.quantity_available == 10
        assert ledger.quantity_reserved == 0

    def test_release_more_than_reserved_is_rejected(self, ledger):
        ledger.reserve(2)

        with pytest.raises(OverRelease):
            ledger.release_reservation(3)
        assert ledger.quantity_reserved == 2
        assert ledger.quantity_available == 8

    def test_confirm_removes_reserved_quantity_from_total(self, ledger):
        ledger.reserve(4)
        ledger.confirm_reservation(4)

        assert ledger.quantity_available == 6
        assert ledger.quantity_reserved == 0
        assert ledger.total_quantity == 6

    def test_confirm_more_than_reserved_is_rejected(self, ledger):
        with pytest.raises(OverRelease):
            ledger.confirm_reservation(1)


class TestStockOperations:
    def test_add_stock(self, ledger):
        ledger.add_stock(5)
        assert ledger.quantity_available == 15

    def test_remove_stock_beyond_available_is_rejected(self, ledger):
        ledger.reserve(5)
        with pytest.raises(InsufficientStock):
            ledger.remove_stock(6)
        assert ledger.quantity_available == 5

    def test_adjust_stock_overwrites_available_only(self, ledger):
        ledger.reserve(3)
        ledger.adjust_stock(20)

        assert ledger.quantity_available == 20
        assert ledger.quantity_reserved == 3

    def test_adjust_to_negative_is_rejected(self, ledger):
        with pytest.raises(InvalidQuantity):
            ledger.adjust_stock(-1)

    def test_low_stock_at_reorder_level(self):
        ledger = InventoryLedger(uuid4(), quantity_available=10, reorder_level=10)
        assert ledger.is_low_stock
        ledger.add_stock(1)
        assert not ledger.is_low_stock

    def test_negative_initial_quantity_is_rejected(self):
        with pytest.raises(InvalidQuantity):
            InventoryLedger(uuid4(), quantity_available=-1)


class TestSerialization:
    def test_to_dict_includes_derived_fields(self, ledger):
        ledger.reserve(1)
        data = ledger.to_dict()

        assert data["total_quantity"] == 10
        assert data["quantity_available"] == 9
        assert data["is_low_stock"] is True
        assert data["sku"] == "WID-001"

    def test_from_row(self, ledger):
        row = SimpleNamespace(
            id=ledger.id,
            product_id=ledger.product_id,
            product_name="Widget",
            sku="WID-001",
            quantity_available=7,
            quantity_reserved=3,
            reorder_level=2,
            max_stock_level=50,
            last_restocked=ledger.last_restocked,
            created_at=ledger.created_at,
            updated_at=None,
        )

        loaded = InventoryLedger.from_row(row)

        assert loaded.product_id == ledger.product_id
        assert loaded.total_quantity == 10
        assert not loaded.is_low_stock


class TestStockMovement:
    def test_is_immutable(self):
        movement = StockMovement(
            product_id=uuid4(),
            movement_type=MovementType.RESERVED,
            quantity=2,
            quantity_before=10,
            quantity_after=8,
        )

        with pytest.raises(AttributeError):
            movement.quantity = 3

    def test_to_dict(self):
        movement = StockMovement(
            product_id=uuid4(),
            movement_type="RELEASED",
            quantity=2,
            quantity_before=8,
            quantity_after=10,
            reference="order-1",
        )

        data = movement.to_dict()

        assert data["movement_type"] == "RELEASED"
        assert data["quantity_after"] - data["quantity_before"] == 2
        assert data["reference"] == "order-1"
