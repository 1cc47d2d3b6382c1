"""
Tests for event routing in the inventory subscriber.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from services.inventory.app.errors import ErrorKind
from services.inventory.app.subscriber import dispatch


async def test_order_created_is_routed(coordinator, state, product_a):
    order_id = uuid4()

    result = await dispatch(
        coordinator,
        "OrderCreated",
        {
            "order_id": str(order_id),
            "items": [{"product_id": str(product_a), "quantity": 2}],
            "total_amount": "19.98",
        },
    )

    assert result.success
    assert state.ledger(product_a).quantity_reserved == 2


async def test_payment_failed_is_routed(coordinator):
    result = await dispatch(coordinator, "PaymentFailed", {"order_id": str(uuid4())})

    assert result.error == ErrorKind.RESERVATION_NOT_FOUND


async def test_payment_completed_is_routed(coordinator):
    result = await dispatch(
        coordinator,
        "PaymentCompleted",
        {
            "order_id": str(uuid4()),
            "payment_id": str(uuid4()),
            "transaction_id": "TXN-1",
            "amount": "10.00",
        },
    )

    assert result.error == ErrorKind.RESERVATION_NOT_FOUND


async def test_unknown_event_is_ignored(coordinator, state):
    assert await dispatch(coordinator, "OrderShipped", {"order_id": str(uuid4())}) is None
    assert state.calls == []


async def test_malformed_payload_raises_validation_error(coordinator):
    with pytest.raises(ValidationError):
        await dispatch(coordinator, "OrderCreated", {"order_id": "not-a-uuid"})
