"""
Inventory Service: 引き当て Saga のイベントハンドラ

  OrderCreated      → 明細ごとに ロック → 台帳 reserve → リザベーション作成 → ムーブメント記録
  PaymentFailed     → 注文のリザベーションを解放（補償トランザクション）
  PaymentCompleted  → 注文のリザベーションを確定（出荷）

  ┌────────────┐ OrderCreated ┌──────────────────────┐ InventoryReserved ┌─────────────┐
  │ Order      │ ───────────▶ │ ReservationCoordinator│ ────────────────▶ │ Payment     │
  │ Service    │              │  (このモジュール)      │ ◀──────────────── │ Service     │
  └────────────┘              └──────────────────────┘  PaymentFailed /   └─────────────┘
                                                         PaymentCompleted

各明細の台帳変更は商品ごとの分散ロックの内側でのみ行う。
ハンドラはビジネスエラーを送出せず、SagaResult (error: ErrorKind) で返す。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel

from .aggregate import (
    DEFAULT_RESERVATION_MINUTES,
    MovementType,
    ReservationStatus,
    StockMovement,
    StockReservation,
)
from .errors import (
    ErrorKind,
    InvalidState,
    InventoryError,
    ProductNotFound,
    ReservationNotFound,
)
from .events import (
    EventPublisher,
    InventoryReserved,
    OrderCreated,
    OrderItem,
    PaymentCompleted,
    PaymentFailed,
    StockReleased,
    StockReservationFailed,
    StockReserved,
)
from .lock import DistributedLock, product_lock_key
from .repositories import RepositoryFactory, unit_of_work

logger = logging.getLogger(__name__)


class SagaResult(BaseModel):
    success: bool
    message: str
    error: ErrorKind | None = None
    order_id: UUID | None = None
    product_id: UUID | None = None
    requested_quantity: int | None = None
    available_quantity: int | None = None
    reservation_ids: list[UUID] = []

    @classmethod
    def from_error(cls, exc: InventoryError, **fields) -> "SagaResult":
        return cls(
            success=False,
            message=exc.message,
            error=exc.kind,
            available_quantity=exc.context.get("available"),
            **fields,
        )


class ReservationCoordinator:
    """
    在庫引き当て Saga のコーディネーター

    rollback_on_failure:
        True  → 後続明細が失敗したら、同じ注文で先に引き当てた明細を解放する
        False → 先行明細の引き当ては残したまま失敗を返す
    """

    def __init__(
        self,
        repositories: RepositoryFactory,
        lock: DistributedLock,
        publisher: EventPublisher,
        lock_lease_seconds: float = 30.0,
        lock_wait_seconds: float = 0.0,
        reservation_minutes: int = DEFAULT_RESERVATION_MINUTES,
        rollback_on_failure: bool = True,
        compensation_wait_seconds: float = 5.0,
    ):
        self.repositories = repositories
        self.lock = lock
        self.publisher = publisher
        self.lock_lease_seconds = lock_lease_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.reservation_minutes = reservation_minutes
        self.rollback_on_failure = rollback_on_failure
        self.compensation_wait_seconds = compensation_wait_seconds

    def _hold(self, product_id: UUID, wait_seconds: float | None = None):
        return self.lock.hold(
            product_lock_key(product_id),
            self.lock_lease_seconds,
            self.lock_wait_seconds if wait_seconds is None else wait_seconds,
        )

    # ── OrderCreated ────────────────────────────────

    async def handle_order_created(self, event: OrderCreated) -> SagaResult:
        logger.info("Processing OrderCreated event for order %s", event.order_id)
        held: list[StockReservation] = []

        for item in event.items:
            try:
                reservation, created = await self._reserve_item(event.order_id, item)
            except InventoryError as e:
                logger.warning(
                    "Reservation failed for order %s, product %s: %s",
                    event.order_id, item.product_id, e.message,
                )
                await self.publisher.publish(
                    StockReservationFailed(
                        order_id=event.order_id,
                        product_id=item.product_id,
                        requested_quantity=item.quantity,
                        available_quantity=e.context.get("available", 0),
                        reason=e.message,
                    )
                )
                failure = SagaResult.from_error(
                    e,
                    order_id=event.order_id,
                    product_id=item.product_id,
                    requested_quantity=item.quantity,
                )
                return await self._abort_order(event.order_id, held, failure)
            except Exception:
                logger.exception(
                    "Error reserving stock for product %s, order %s",
                    item.product_id, event.order_id,
                )
                failure = SagaResult(
                    success=False,
                    message="Unexpected error while reserving stock",
                    error=ErrorKind.UNEXPECTED,
                    order_id=event.order_id,
                    product_id=item.product_id,
                    requested_quantity=item.quantity,
                )
                return await self._abort_order(event.order_id, held, failure)

            if reservation.status == ReservationStatus.RESERVED:
                held.append(reservation)
            if created:
                await self.publisher.publish(
                    StockReserved(
                        reservation_id=reservation.id,
                        order_id=reservation.order_id,
                        product_id=reservation.product_id,
                        quantity=reservation.quantity,
                        reserved_at=reservation.reserved_at,
                    )
                )

        if event.total_amount is not None:
            await self.publisher.publish(
                InventoryReserved(order_id=event.order_id, amount=event.total_amount)
            )
        else:
            logger.info(
                "Order %s has no total_amount; skipping payment hand-off "
                "(stock stays reserved until the expiry sweep)",
                event.order_id,
            )

        logger.info("All stock reserved for order %s", event.order_id)
        return SagaResult(
            success=True,
            message="Stock reserved successfully",
            order_id=event.order_id,
            reservation_ids=[r.id for r in held],
        )

    async def _reserve_item(
        self, order_id: UUID, item: OrderItem
    ) -> tuple[StockReservation, bool]:
        async with self._hold(item.product_id):
            async with unit_of_work(self.repositories) as repo:
                for existing in await repo.list_reservations_by_order(order_id):
                    if existing.product_id == item.product_id and existing.status in (
                        ReservationStatus.RESERVED,
                        ReservationStatus.CONFIRMED,
                    ):
                        logger.info(
                            "Order %s already holds reservation %s for product %s",
                            order_id, existing.id, item.product_id,
                        )
                        return existing, False

                ledger = await repo.get_ledger(item.product_id)
                if ledger is None:
                    raise ProductNotFound(item.product_id)

                quantity_before = ledger.quantity_available
                ledger.reserve(item.quantity)
                reservation = StockReservation(
                    item.product_id, order_id, item.quantity, self.reservation_minutes
                )

                await repo.update_ledger(ledger)
                await repo.create_reservation(reservation)
                await repo.append_movement(
                    StockMovement(
                        product_id=item.product_id,
                        movement_type=MovementType.RESERVED,
                        quantity=item.quantity,
                        quantity_before=quantity_before,
                        quantity_after=ledger.quantity_available,
                        reference=str(order_id),
                        notes=f"Reserved for order {order_id}",
                    )
                )

        logger.info(
            "Stock reserved. Product: %s, Quantity: %s, Reservation: %s",
            item.product_id, item.quantity, reservation.id,
        )
        return reservation, True

    async def _abort_order(
        self, order_id: UUID, held: list[StockReservation], failure: SagaResult
    ) -> SagaResult:
        if not self.rollback_on_failure or not held:
            return failure

        reason = f"Order reservation incomplete: {failure.message}"
        for reservation in held:
            try:
                await self._release_one(
                    reservation, reason, wait_seconds=self.compensation_wait_seconds
                )
            except Exception:
                logger.critical(
                    "Compensation failed for reservation %s of order %s; "
                    "ledger and reservations need manual reconciliation",
                    reservation.id, order_id, exc_info=True,
                )
                return failure.model_copy(
                    update={
                        "error": ErrorKind.INCONSISTENT_STATE,
                        "message": (
                            f"{failure.message}; compensation of reservation "
                            f"{reservation.id} failed"
                        ),
                    }
                )

        logger.info(
            "Released %d earlier reservation(s) of order %s", len(held), order_id
        )
        return failure.model_copy(
            update={"message": f"{failure.message} (released {len(held)} earlier item(s))"}
        )

    # ── PaymentFailed (補償) ────────────────────────

    async def handle_payment_failed(self, event: PaymentFailed) -> SagaResult:
        logger.info("Processing PaymentFailed event for order %s", event.order_id)
        reason = event.reason or "Payment failed"

        try:
            reservations = await self._load_order_reservations(event.order_id)
            confirmed = [r for r in reservations if r.status == ReservationStatus.CONFIRMED]
            if confirmed:
                raise InvalidState(
                    "Cannot release confirmed reservation",
                    reservation_id=str(confirmed[0].id),
                )

            released = []
            for reservation in reservations:
                if reservation.status != ReservationStatus.RESERVED:
                    logger.debug(
                        "Reservation %s already %s, skipping",
                        reservation.id, reservation.status.value,
                    )
                    continue
                released.append(await self._release_one(reservation, reason))
        except InventoryError as e:
            logger.warning(
                "Failed to release stock for order %s: %s", event.order_id, e.message
            )
            return SagaResult.from_error(e, order_id=event.order_id)
        except Exception:
            logger.exception("Error releasing stock reservation for order %s", event.order_id)
            return SagaResult(
                success=False,
                message="Unexpected error while releasing stock",
                error=ErrorKind.UNEXPECTED,
                order_id=event.order_id,
            )

        return SagaResult(
            success=True,
            message=f"Released {len(released)} reservation(s)",
            order_id=event.order_id,
            reservation_ids=[r.id for r in released],
        )

    async def _release_one(
        self,
        reservation: StockReservation,
        reason: str,
        expire: bool = False,
        wait_seconds: float | None = None,
    ) -> StockReservation:
        async with self._hold(reservation.product_id, wait_seconds):
            async with unit_of_work(self.repositories) as repo:
                current = await repo.get_reservation(reservation.id)
                if current is None:
                    raise ReservationNotFound(reservation.order_id)
                ledger = await repo.get_ledger(current.product_id)
                if ledger is None:
                    raise ProductNotFound(current.product_id)

                if expire:
                    current.mark_expired()
                else:
                    current.release(reason)
                quantity_before = ledger.quantity_available
                ledger.release_reservation(current.quantity)

                await repo.update_ledger(ledger)
                await repo.update_reservation(current)
                await repo.append_movement(
                    StockMovement(
                        product_id=current.product_id,
                        movement_type=MovementType.RELEASED,
                        quantity=current.quantity,
                        quantity_before=quantity_before,
                        quantity_after=ledger.quantity_available,
                        reference=str(current.order_id),
                        notes=f"Released: {current.reason}",
                    )
                )

        logger.info(
            "Stock reservation released. Product: %s, Quantity: %s, Order: %s",
            current.product_id, current.quantity, current.order_id,
        )
        await self.publisher.publish(
            StockReleased(
                order_id=current.order_id,
                product_id=current.product_id,
                quantity=current.quantity,
                reason=current.reason or reason,
            )
        )
        return current

    # ── PaymentCompleted (確定) ─────────────────────

    async def handle_payment_completed(self, event: PaymentCompleted) -> SagaResult:
        logger.info("Processing PaymentCompleted event for order %s", event.order_id)

        try:
            reservations = await self._load_order_reservations(event.order_id)
            terminal = [
                r for r in reservations
                if r.status in (ReservationStatus.RELEASED, ReservationStatus.EXPIRED)
            ]
            if terminal:
                raise InvalidState(
                    f"Cannot confirm reservation in {terminal[0].status.value} status",
                    reservation_id=str(terminal[0].id),
                )

            confirmed = []
            for reservation in reservations:
                if reservation.status == ReservationStatus.CONFIRMED:
                    continue
                confirmed.append(await self._confirm_one(reservation))
        except InventoryError as e:
            logger.warning(
                "Failed to confirm stock for order %s: %s", event.order_id, e.message
            )
            return SagaResult.from_error(e, order_id=event.order_id)
        except Exception:
            logger.exception("Error confirming stock reservation for order %s", event.order_id)
            return SagaResult(
                success=False,
                message="Unexpected error while confirming stock",
                error=ErrorKind.UNEXPECTED,
                order_id=event.order_id,
            )

        return SagaResult(
            success=True,
            message=f"Confirmed {len(confirmed)} reservation(s)",
            order_id=event.order_id,
            reservation_ids=[r.id for r in confirmed],
        )

    async def _confirm_one(self, reservation: StockReservation) -> StockReservation:
        async with self._hold(reservation.product_id):
            async with unit_of_work(self.repositories) as repo:
                current = await repo.get_reservation(reservation.id)
                if current is None:
                    raise ReservationNotFound(reservation.order_id)
                ledger = await repo.get_ledger(current.product_id)
                if ledger is None:
                    raise ProductNotFound(current.product_id)

                current.confirm()
                ledger.confirm_reservation(current.quantity)

                await repo.update_ledger(ledger)
                await repo.update_reservation(current)
                # 引当済数だけが減る。quantity_available は変わらない
                await repo.append_movement(
                    StockMovement(
                        product_id=current.product_id,
                        movement_type=MovementType.STOCK_OUT,
                        quantity=current.quantity,
                        quantity_before=ledger.quantity_available,
                        quantity_after=ledger.quantity_available,
                        reference=str(current.order_id),
                        notes=f"Shipped for order {current.order_id}",
                    )
                )

        logger.info(
            "Stock reservation confirmed. Product: %s, Quantity: %s, Order: %s",
            current.product_id, current.quantity, current.order_id,
        )
        return current

    # ── 期限切れスイープ ────────────────────────────

    async def expire_reservations(self, now: datetime | None = None) -> int:
        """期限切れの RESERVED を解放して EXPIRED にする。処理件数を返す。"""
        now = now or datetime.now(timezone.utc)
        async with self.repositories() as repo:
            expired = await repo.list_expired_reservations(now)

        count = 0
        for reservation in expired:
            try:
                await self._release_one(reservation, "Reservation expired", expire=True)
                count += 1
            except InventoryError as e:
                # ロック競合や既に遷移済みのものは次回のスイープで再評価される
                logger.warning(
                    "Could not expire reservation %s: %s", reservation.id, e.message
                )
        if count:
            logger.info("Expired %d stock reservation(s)", count)
        return count

    async def _load_order_reservations(self, order_id: UUID) -> list[StockReservation]:
        async with self.repositories() as repo:
            reservations = await repo.list_reservations_by_order(order_id)
        if not reservations:
            raise ReservationNotFound(order_id)
        return reservations
