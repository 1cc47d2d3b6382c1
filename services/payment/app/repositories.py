"""
Payment Service: リポジトリ (PostgreSQL)
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import Payment, PaymentStatus


class PaymentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def create(self, payment: Payment) -> None:
        await self.session.execute(
            text("""
                INSERT INTO payments
                    (id, order_id, amount, status, transaction_id, gateway_response,
                     created_at, completed_at, failed_at, failure_reason)
                VALUES
                    (:id, :oid, :amount, :status, :txn, :response,
                     :created_at, :completed_at, :failed_at, :reason)
            """),
            {
                "id": str(payment.id),
                "oid": str(payment.order_id),
                "amount": payment.amount,
                "status": payment.status.value,
                "txn": payment.transaction_id,
                "response": payment.gateway_response,
                "created_at": payment.created_at,
                "completed_at": payment.completed_at,
                "failed_at": payment.failed_at,
                "reason": payment.failure_reason,
            },
        )

    async def update(self, payment: Payment) -> None:
        await self.session.execute(
            text("""
                UPDATE payments
                SET status = :status,
                    transaction_id = :txn,
                    gateway_response = :response,
                    completed_at = :completed_at,
                    failed_at = :failed_at,
                    failure_reason = :reason
                WHERE id = :id
            """),
            {
                "status": payment.status.value,
                "txn": payment.transaction_id,
                "response": payment.gateway_response,
                "completed_at": payment.completed_at,
                "failed_at": payment.failed_at,
                "reason": payment.failure_reason,
                "id": str(payment.id),
            },
        )

    async def list_by_order(self, order_id: UUID) -> list[Payment]:
        result = await self.session.execute(
            text("SELECT * FROM payments WHERE order_id = :oid ORDER BY created_at ASC"),
            {"oid": str(order_id)},
        )
        return [Payment.from_row(row) for row in result.fetchall()]

    async def list_failed(self) -> list[Payment]:
        result = await self.session.execute(
            text("SELECT * FROM payments WHERE status = :status ORDER BY failed_at DESC"),
            {"status": PaymentStatus.FAILED.value},
        )
        return [Payment.from_row(row) for row in result.fetchall()]
