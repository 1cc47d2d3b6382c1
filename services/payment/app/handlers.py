"""
Payment Service: 支払い Saga のイベントハンドラ

InventoryReserved を受けて 1 注文につき 1 回だけ課金を試みる。

  1. 冪等性ストアを order_id で確認 → 記録済みなら前回の結果をそのまま返す
  2. order_id の処理権を claim → 取れなければ記録済みの結果か「処理中」を返す
  3. Payment を作成 (PROCESSING) して保存
  4. ゲートウェイ呼び出し
  5. SUCCESS / FAILED に遷移して保存
  6. 成否にかかわらず結果を冪等性ストアへ保存（どちらも終端状態）
  7. PaymentCompleted / PaymentFailed を発行

ゲートウェイの例外や不正な応答は FAILED の支払いとして扱い、Saga をクラッシュさせない。
claim はゲートウェイ呼び出し前に諦めたときだけ解放する。呼び出し後は
課金済みの可能性があるので、結果を保存できなくても claim を残す。
"""

import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable
from uuid import UUID

from pydantic import BaseModel

from .aggregate import Payment, PaymentStatus
from .errors import ErrorKind, GatewayError, PaymentError
from .events import EventPublisher, InventoryReserved, PaymentCompleted, PaymentFailed
from .gateway import PaymentGateway
from .idempotency import IdempotencyStore
from .repositories import PaymentRepository

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[], AbstractAsyncContextManager[PaymentRepository]]


class PaymentResult(BaseModel):
    success: bool
    message: str
    error: ErrorKind | None = None
    order_id: UUID
    payment_id: UUID | None = None
    transaction_id: str | None = None


class PaymentCoordinator:
    def __init__(
        self,
        repositories: RepositoryFactory,
        gateway: PaymentGateway,
        idempotency: IdempotencyStore,
        publisher: EventPublisher,
    ):
        self.repositories = repositories
        self.gateway = gateway
        self.idempotency = idempotency
        self.publisher = publisher

    async def handle_inventory_reserved(self, event: InventoryReserved) -> PaymentResult:
        logger.info("Processing InventoryReserved event for order %s", event.order_id)
        key = str(event.order_id)

        recorded = await self._recorded(key)
        if recorded is not None:
            logger.info("Payment already processed for order %s", event.order_id)
            return recorded

        if not await self.idempotency.claim(key):
            # claim と確認の間に結果が保存された場合
            recorded = await self._recorded(key)
            if recorded is not None:
                return recorded
            logger.info("Payment for order %s is already in progress", event.order_id)
            return PaymentResult(
                success=False,
                message="Payment already in progress",
                error=ErrorKind.IN_PROGRESS,
                order_id=event.order_id,
            )

        try:
            payment = Payment(event.order_id, event.amount)
            payment.mark_processing()
            async with self.repositories() as repo:
                await repo.create(payment)
                await repo.commit()
        except PaymentError as e:
            await self.idempotency.release_claim(key)
            logger.warning("Payment rejected for order %s: %s", event.order_id, e.message)
            await self.publisher.publish(PaymentFailed(order_id=event.order_id, reason=e.message))
            return PaymentResult(
                success=False, message=e.message, error=e.kind, order_id=event.order_id
            )
        except Exception:
            await self.idempotency.release_claim(key)
            logger.exception("Error creating payment for order %s", event.order_id)
            return self._unexpected(event.order_id)

        # ここから先は課金済みの可能性がある。claim は解放しない
        try:
            error = await self._charge(payment)
        except Exception:
            logger.exception("Error charging payment %s for order %s", payment.id, event.order_id)
            return self._unexpected(event.order_id)

        try:
            async with self.repositories() as repo:
                await repo.update(payment)
                await repo.commit()
        except Exception:
            logger.exception(
                "Error saving payment %s for order %s after gateway call; "
                "claim kept to prevent a second charge",
                payment.id, event.order_id,
            )
            return self._unexpected(event.order_id)

        result = self._result_for(payment, error)
        await self.idempotency.save(key, result.model_dump_json())

        if payment.status == PaymentStatus.SUCCESS:
            logger.info(
                "Payment completed. Order: %s, Transaction: %s",
                event.order_id, payment.transaction_id,
            )
            await self.publisher.publish(
                PaymentCompleted(
                    order_id=payment.order_id,
                    payment_id=payment.id,
                    transaction_id=payment.transaction_id,
                    amount=payment.amount,
                )
            )
        else:
            logger.warning(
                "Payment failed. Order: %s, Reason: %s", event.order_id, payment.failure_reason
            )
            await self.publisher.publish(
                PaymentFailed(
                    order_id=payment.order_id,
                    payment_id=payment.id,
                    reason=payment.failure_reason,
                )
            )
        return result

    async def _charge(self, payment: Payment) -> ErrorKind | None:
        """ゲートウェイを呼び出して payment を終端状態に遷移させる。失敗時の ErrorKind を返す。"""
        try:
            outcome = await self.gateway.process_payment(payment.order_id, payment.amount)
        except GatewayError as e:
            logger.warning(
                "Payment gateway error for order %s: %s", payment.order_id, e.message
            )
            payment.mark_failed(e.message)
            return ErrorKind.GATEWAY_ERROR

        if not outcome.success:
            payment.mark_failed(
                outcome.error_message or "Payment gateway error", outcome.gateway_response
            )
            return ErrorKind.PAYMENT_DECLINED

        try:
            payment.mark_success(outcome.transaction_id, outcome.gateway_response)
        except PaymentError as e:
            logger.error(
                "Invalid gateway result for order %s: %s", payment.order_id, e.message
            )
            payment.mark_failed(f"Invalid gateway result: {e.message}", outcome.gateway_response)
            return ErrorKind.GATEWAY_ERROR
        return None

    async def _recorded(self, key: str) -> PaymentResult | None:
        if not await self.idempotency.exists(key):
            return None
        recorded = await self.idempotency.get(key)
        return PaymentResult.model_validate_json(recorded) if recorded else None

    @staticmethod
    def _unexpected(order_id: UUID) -> PaymentResult:
        return PaymentResult(
            success=False,
            message="Payment processing error",
            error=ErrorKind.UNEXPECTED,
            order_id=order_id,
        )

    @staticmethod
    def _result_for(payment: Payment, error: ErrorKind | None) -> PaymentResult:
        if payment.status == PaymentStatus.SUCCESS:
            return PaymentResult(
                success=True,
                message="Payment successful",
                order_id=payment.order_id,
                payment_id=payment.id,
                transaction_id=payment.transaction_id,
            )
        return PaymentResult(
            success=False,
            message=payment.failure_reason or "Payment failed",
            error=error,
            order_id=payment.order_id,
            payment_id=payment.id,
        )
