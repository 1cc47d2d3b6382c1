"""
Tests for the direct ledger commands and the read-side queries.
"""

from uuid import uuid4

import pytest

from services.inventory.app import commands, queries
from services.inventory.app.aggregate import MovementType
from services.inventory.app.errors import (
    InsufficientStock,
    InvalidState,
    LockUnavailable,
    ProductNotFound,
)
from services.inventory.app.events import OrderCreated, OrderItem
from services.inventory.app.lock import product_lock_key


class TestCreateLedger:
    async def test_records_initial_stock_in(self, repositories, lock, state):
        product_id = uuid4()

        ledger = await commands.create_ledger(
            repositories, lock, product_id, "Widget", "WID-001", 25, reorder_level=5
        )

        assert state.ledger(product_id).quantity_available == 25
        assert ledger.reorder_level == 5
        [movement] = state.movements_for(product_id)
        assert movement.movement_type == MovementType.STOCK_IN
        assert (movement.quantity_before, movement.quantity_after) == (0, 25)
        assert movement.reference == "INITIAL"

    async def test_duplicate_product_is_rejected(self, repositories, lock, state, product_a):
        with pytest.raises(InvalidState):
            await commands.create_ledger(repositories, lock, product_a, "Dup", "DUP", 1)

        assert state.ledger(product_a).quantity_available == 100
        assert state.movements == []


class TestStockCommands:
    async def test_add_stock(self, repositories, lock, state, product_a):
        await commands.add_stock(repositories, lock, product_a, 20, reference="PO-1")

        assert state.ledger(product_a).quantity_available == 120
        [movement] = state.movements_for(product_a)
        assert movement.movement_type == MovementType.STOCK_IN
        assert (movement.quantity_before, movement.quantity_after) == (100, 120)
        assert movement.reference == "PO-1"

    async def test_return_stock(self, repositories, lock, state, product_a):
        await commands.return_stock(repositories, lock, product_a, 2)

        assert state.ledger(product_a).quantity_available == 102
        assert state.movements_for(product_a)[0].movement_type == MovementType.RETURNED

    async def test_remove_damaged_stock(self, repositories, lock, state, product_a):
        await commands.remove_stock(repositories, lock, product_a, 10, damaged=True)

        assert state.ledger(product_a).quantity_available == 90
        assert state.movements_for(product_a)[0].movement_type == MovementType.DAMAGED

    async def test_remove_more_than_available(self, repositories, lock, state, product_b):
        with pytest.raises(InsufficientStock):
            await commands.remove_stock(repositories, lock, product_b, 2)

        assert state.ledger(product_b).quantity_available == 1
        assert state.movements == []
        assert not lock.is_held(product_lock_key(product_b))

    async def test_adjust_records_absolute_delta(self, repositories, lock, state, product_a):
        await commands.adjust_stock(repositories, lock, product_a, 93, notes="cycle count")

        [movement] = state.movements_for(product_a)
        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity == 7
        assert (movement.quantity_before, movement.quantity_after) == (100, 93)

    async def test_unknown_product(self, repositories, lock):
        with pytest.raises(ProductNotFound):
            await commands.add_stock(repositories, lock, uuid4(), 1)

    async def test_respects_product_lock(self, repositories, lock, state, product_a):
        await lock.acquire(product_lock_key(product_a), 30)

        with pytest.raises(LockUnavailable):
            await commands.add_stock(repositories, lock, product_a, 1)
        assert state.ledger(product_a).quantity_available == 100

    async def test_update_reorder_level_writes_no_movement(self, repositories, lock, state, product_a):
        await commands.update_reorder_level(repositories, lock, product_a, 150)

        assert state.ledger(product_a).reorder_level == 150
        assert state.movements == []


class TestQueries:
    async def test_get_ledger(self, repositories, product_a):
        data = await queries.get_ledger(repositories, product_a)

        assert data["product_id"] == str(product_a)
        assert data["total_quantity"] == 100

    async def test_get_missing_ledger(self, repositories):
        assert await queries.get_ledger(repositories, uuid4()) is None

    async def test_check_stock(self, repositories, product_b):
        assert (await queries.check_stock(repositories, product_b, 1))["can_fulfill"] is True
        assert (await queries.check_stock(repositories, product_b, 2))["can_fulfill"] is False

    async def test_low_stock(self, repositories, product_a, product_b):
        low = await queries.list_low_stock(repositories)

        assert [item["product_id"] for item in low] == [str(product_b)]

    async def test_movements_newest_first(self, repositories, lock, product_a):
        await commands.add_stock(repositories, lock, product_a, 1)
        await commands.remove_stock(repositories, lock, product_a, 2)

        history = await queries.list_movements(repositories, product_a)

        assert [m["movement_type"] for m in history] == ["STOCK_OUT", "STOCK_IN"]

    async def test_reservations_for_order(self, coordinator, repositories, product_a):
        event = OrderCreated(
            order_id=uuid4(), items=[OrderItem(product_id=product_a, quantity=2)]
        )
        await coordinator.handle_order_created(event)

        [reservation] = await queries.list_reservations(repositories, event.order_id)

        assert reservation["status"] == "RESERVED"
        assert reservation["quantity"] == 2
