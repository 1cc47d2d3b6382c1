"""
Inventory Service: リポジトリ (PostgreSQL)

3 つのテーブルを 1 つの AsyncSession 上で扱う。
  inventory_ledger    product_id UNIQUE
  stock_reservations  order_id にインデックス
  stock_movements     追記のみ。product_id ごとに新しい順で読む

台帳更新・リザベーション・ムーブメントは同じセッションに書き、
commit() でまとめて確定する。途中で失敗したら rollback() する。
"""

from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import InventoryLedger, ReservationStatus, StockMovement, StockReservation
from .errors import ConcurrentModification

RepositoryFactory = Callable[[], AbstractAsyncContextManager["InventoryRepository"]]


@asynccontextmanager
async def unit_of_work(repositories: RepositoryFactory) -> AsyncIterator["InventoryRepository"]:
    """ブロックが正常終了すれば commit、例外 (キャンセル含む) なら rollback。"""
    async with repositories() as repo:
        try:
            yield repo
        except BaseException:
            await repo.rollback()
            raise
        await repo.commit()


class InventoryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # ── inventory_ledger ────────────────────────────

    async def get_ledger(self, product_id: UUID) -> InventoryLedger | None:
        result = await self.session.execute(
            text("SELECT * FROM inventory_ledger WHERE product_id = :pid"),
            {"pid": str(product_id)},
        )
        row = result.fetchone()
        return InventoryLedger.from_row(row) if row else None

    async def ledger_exists(self, product_id: UUID) -> bool:
        result = await self.session.execute(
            text("SELECT 1 FROM inventory_ledger WHERE product_id = :pid"),
            {"pid": str(product_id)},
        )
        return result.fetchone() is not None

    async def create_ledger(self, ledger: InventoryLedger) -> None:
        await self.session.execute(
            text("""
                INSERT INTO inventory_ledger
                    (id, product_id, product_name, sku, quantity_available,
                     quantity_reserved, reorder_level, max_stock_level,
                     last_restocked, created_at, updated_at)
                VALUES
                    (:id, :pid, :name, :sku, :available,
                     :reserved, :reorder, :max_level,
                     :restocked, :created, :updated)
            """),
            {
                "id": str(ledger.id),
                "pid": str(ledger.product_id),
                "name": ledger.product_name,
                "sku": ledger.sku,
                "available": ledger.quantity_available,
                "reserved": ledger.quantity_reserved,
                "reorder": ledger.reorder_level,
                "max_level": ledger.max_stock_level,
                "restocked": ledger.last_restocked,
                "created": ledger.created_at,
                "updated": ledger.updated_at,
            },
        )

    async def update_ledger(self, ledger: InventoryLedger) -> None:
        """
        読み込み時の数量と一致する場合だけ更新する。

        ロックのリースが重なって別の書き込みが先に入っていたら、
        上書きせずに ConcurrentModification を送出する（作業単位はロールバックされる）。
        """
        expected_available, expected_reserved = ledger.persisted_counts
        result = await self.session.execute(
            text("""
                UPDATE inventory_ledger
                SET quantity_available = :available,
                    quantity_reserved = :reserved,
                    reorder_level = :reorder,
                    last_restocked = :restocked,
                    updated_at = :updated
                WHERE product_id = :pid
                  AND quantity_available = :expected_available
                  AND quantity_reserved = :expected_reserved
            """),
            {
                "available": ledger.quantity_available,
                "reserved": ledger.quantity_reserved,
                "reorder": ledger.reorder_level,
                "restocked": ledger.last_restocked,
                "updated": ledger.updated_at,
                "pid": str(ledger.product_id),
                "expected_available": expected_available,
                "expected_reserved": expected_reserved,
            },
        )
        if result.rowcount != 1:
            raise ConcurrentModification(ledger.product_id)
        ledger.mark_persisted()

    async def list_low_stock(self) -> list[InventoryLedger]:
        result = await self.session.execute(
            text("""
                SELECT * FROM inventory_ledger
                WHERE quantity_available <= reorder_level
                ORDER BY quantity_available ASC
            """),
        )
        return [InventoryLedger.from_row(row) for row in result.fetchall()]

    # ── stock_reservations ──────────────────────────

    async def create_reservation(self, reservation: StockReservation) -> None:
        await self.session.execute(
            text("""
                INSERT INTO stock_reservations
                    (id, product_id, order_id, quantity, status,
                     reserved_at, expires_at, confirmed_at, released_at, reason)
                VALUES
                    (:id, :pid, :oid, :qty, :status,
                     :reserved_at, :expires_at, :confirmed_at, :released_at, :reason)
            """),
            {
                "id": str(reservation.id),
                "pid": str(reservation.product_id),
                "oid": str(reservation.order_id),
                "qty": reservation.quantity,
                "status": reservation.status.value,
                "reserved_at": reservation.reserved_at,
                "expires_at": reservation.expires_at,
                "confirmed_at": reservation.confirmed_at,
                "released_at": reservation.released_at,
                "reason": reservation.reason,
            },
        )

    async def update_reservation(self, reservation: StockReservation) -> None:
        await self.session.execute(
            text("""
                UPDATE stock_reservations
                SET status = :status,
                    confirmed_at = :confirmed_at,
                    released_at = :released_at,
                    reason = :reason
                WHERE id = :id
            """),
            {
                "status": reservation.status.value,
                "confirmed_at": reservation.confirmed_at,
                "released_at": reservation.released_at,
                "reason": reservation.reason,
                "id": str(reservation.id),
            },
        )

    async def get_reservation(self, reservation_id: UUID) -> StockReservation | None:
        result = await self.session.execute(
            text("SELECT * FROM stock_reservations WHERE id = :id"),
            {"id": str(reservation_id)},
        )
        row = result.fetchone()
        return StockReservation.from_row(row) if row else None

    async def list_reservations_by_order(self, order_id: UUID) -> list[StockReservation]:
        result = await self.session.execute(
            text("""
                SELECT * FROM stock_reservations
                WHERE order_id = :oid
                ORDER BY reserved_at ASC
            """),
            {"oid": str(order_id)},
        )
        return [StockReservation.from_row(row) for row in result.fetchall()]

    async def list_expired_reservations(self, now: datetime) -> list[StockReservation]:
        result = await self.session.execute(
            text("""
                SELECT * FROM stock_reservations
                WHERE status = :status AND expires_at < :now
                ORDER BY expires_at ASC
            """),
            {"status": ReservationStatus.RESERVED.value, "now": now},
        )
        return [StockReservation.from_row(row) for row in result.fetchall()]

    # ── stock_movements (追記のみ) ──────────────────

    async def append_movement(self, movement: StockMovement) -> None:
        await self.session.execute(
            text("""
                INSERT INTO stock_movements
                    (id, product_id, movement_type, quantity, quantity_before,
                     quantity_after, reference, notes, created_at)
                VALUES
                    (:id, :pid, :type, :qty, :before,
                     :after, :reference, :notes, :created_at)
            """),
            {
                "id": str(movement.id),
                "pid": str(movement.product_id),
                "type": movement.movement_type.value,
                "qty": movement.quantity,
                "before": movement.quantity_before,
                "after": movement.quantity_after,
                "reference": movement.reference,
                "notes": movement.notes,
                "created_at": movement.created_at,
            },
        )

    async def list_movements(self, product_id: UUID, limit: int = 100) -> list[StockMovement]:
        result = await self.session.execute(
            text("""
                SELECT * FROM stock_movements
                WHERE product_id = :pid
                ORDER BY created_at DESC
                LIMIT :limit
            """),
            {"pid": str(product_id), "limit": limit},
        )
        return [StockMovement.from_row(row) for row in result.fetchall()]
