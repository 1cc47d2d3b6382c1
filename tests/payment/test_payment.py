"""
Tests for the Payment aggregate.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from services.payment.app.aggregate import Payment, PaymentStatus
from services.payment.app.errors import ErrorKind, InvalidAmount, InvalidPaymentState


@pytest.fixture
def payment():
    return Payment(uuid4(), Decimal("49.99"))


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00")])
def test_non_positive_amount_is_rejected(amount):
    with pytest.raises(InvalidAmount) as exc_info:
        Payment(uuid4(), amount)
    assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT


def test_success_path(payment):
    payment.mark_processing()
    payment.mark_success("TXN-123", "approved")

    assert payment.status == PaymentStatus.SUCCESS
    assert payment.transaction_id == "TXN-123"
    assert payment.completed_at is not None


def test_success_requires_transaction_id(payment):
    payment.mark_processing()

    with pytest.raises(InvalidPaymentState):
        payment.mark_success("  ")
    assert payment.status == PaymentStatus.PROCESSING


def test_processing_only_from_initiated(payment):
    payment.mark_processing()

    with pytest.raises(InvalidPaymentState):
        payment.mark_processing()


def test_failed_records_reason(payment):
    payment.mark_processing()
    payment.mark_failed("Card declined", "declined")

    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"
    assert payment.failed_at is not None


def test_successful_payment_cannot_fail(payment):
    payment.mark_success("TXN-1")

    with pytest.raises(InvalidPaymentState):
        payment.mark_failed("late failure")
    assert payment.status == PaymentStatus.SUCCESS


def test_failed_payment_cannot_succeed(payment):
    payment.mark_failed("Card declined")

    with pytest.raises(InvalidPaymentState):
        payment.mark_success("TXN-1")


def test_to_dict(payment):
    data = payment.to_dict()

    assert data["amount"] == "49.99"
    assert data["status"] == "INITIATED"
    assert data["transaction_id"] is None
