"""
Payment Service: 支払い集約 (Payment)

状態遷移:
    INITIATED  → PROCESSING
    INITIATED / PROCESSING → SUCCESS   (transaction_id 必須)
    SUCCESS 以外 → FAILED
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from .errors import InvalidAmount, InvalidPaymentState


class PaymentStatus(str, Enum):
    INITIATED = "INITIATED"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Payment:
    def __init__(self, order_id: UUID, amount: Decimal) -> None:
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        self.id: UUID = uuid4()
        self.order_id = order_id
        self.amount = Decimal(amount)
        self.status = PaymentStatus.INITIATED
        self.transaction_id: str | None = None
        self.gateway_response: str | None = None
        self.created_at: datetime = datetime.now(timezone.utc)
        self.completed_at: datetime | None = None
        self.failed_at: datetime | None = None
        self.failure_reason: str | None = None

    def mark_processing(self) -> None:
        if self.status != PaymentStatus.INITIATED:
            raise InvalidPaymentState(
                f"Cannot mark payment as processing from {self.status.value} status"
            )
        self.status = PaymentStatus.PROCESSING

    def mark_success(self, transaction_id: str, gateway_response: str | None = None) -> None:
        if self.status not in (PaymentStatus.INITIATED, PaymentStatus.PROCESSING):
            raise InvalidPaymentState(
                f"Cannot mark payment as success from {self.status.value} status"
            )
        if not transaction_id or not transaction_id.strip():
            raise InvalidPaymentState("Transaction ID is required")

        self.status = PaymentStatus.SUCCESS
        self.transaction_id = transaction_id
        self.gateway_response = gateway_response
        self.completed_at = datetime.now(timezone.utc)

    def mark_failed(self, reason: str, gateway_response: str | None = None) -> None:
        if self.status == PaymentStatus.SUCCESS:
            raise InvalidPaymentState("Cannot mark successful payment as failed")

        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.gateway_response = gateway_response
        self.failed_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "order_id": str(self.order_id),
            "amount": str(self.amount),
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "gateway_response": self.gateway_response,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_row(cls, row) -> "Payment":
        payment = cls.__new__(cls)
        payment.id = UUID(str(row.id))
        payment.order_id = UUID(str(row.order_id))
        payment.amount = Decimal(str(row.amount))
        payment.status = PaymentStatus(row.status)
        payment.transaction_id = row.transaction_id
        payment.gateway_response = row.gateway_response
        payment.created_at = row.created_at
        payment.completed_at = row.completed_at
        payment.failed_at = row.failed_at
        payment.failure_reason = row.failure_reason
        return payment
