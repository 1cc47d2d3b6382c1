"""
Inventory Service: コマンドハンドラ (CQRS Write 側)

台帳への直接操作（入庫・出庫・棚卸調整）。
Saga を経由しない変更も、必ず商品ロックの内側で台帳を更新し、
同じ作業単位で StockMovement を記録する。
"""

import logging
from typing import Callable
from uuid import UUID

from .aggregate import InventoryLedger, MovementType, StockMovement
from .errors import InvalidState, ProductNotFound
from .lock import DistributedLock, product_lock_key
from .repositories import RepositoryFactory, unit_of_work

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 30.0


async def create_ledger(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    product_name: str,
    sku: str,
    initial_quantity: int,
    reorder_level: int = 10,
    max_stock_level: int = 1000,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    """
    初回入庫で台帳を作成する。

    初期在庫は StockIn ムーブメント (0 → initial_quantity) として記録する。
    """
    ledger = InventoryLedger(
        product_id,
        product_name=product_name,
        sku=sku,
        quantity_available=initial_quantity,
        reorder_level=reorder_level,
        max_stock_level=max_stock_level,
    )

    async with lock.hold(product_lock_key(product_id), lease_seconds):
        async with unit_of_work(repositories) as repo:
            if await repo.ledger_exists(product_id):
                raise InvalidState(
                    f"Inventory ledger already exists for product {product_id}",
                    product_id=str(product_id),
                )
            await repo.create_ledger(ledger)
            await repo.append_movement(
                StockMovement(
                    product_id=product_id,
                    movement_type=MovementType.STOCK_IN,
                    quantity=initial_quantity,
                    quantity_before=0,
                    quantity_after=initial_quantity,
                    reference="INITIAL",
                    notes="Initial stock creation",
                )
            )

    logger.info("Inventory ledger created: product %s, quantity %s", product_id, initial_quantity)
    return ledger


async def _mutate(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    movement_type: MovementType,
    apply: Callable[[InventoryLedger], int],
    reference: str | None,
    notes: str | None,
    lease_seconds: float,
) -> InventoryLedger:
    async with lock.hold(product_lock_key(product_id), lease_seconds):
        async with unit_of_work(repositories) as repo:
            ledger = await repo.get_ledger(product_id)
            if ledger is None:
                raise ProductNotFound(product_id)

            quantity_before = ledger.quantity_available
            quantity = apply(ledger)
            await repo.update_ledger(ledger)
            await repo.append_movement(
                StockMovement(
                    product_id=product_id,
                    movement_type=movement_type,
                    quantity=quantity,
                    quantity_before=quantity_before,
                    quantity_after=ledger.quantity_available,
                    reference=reference,
                    notes=notes,
                )
            )

    logger.info(
        "%s applied to product %s: %s -> %s",
        movement_type.value, product_id, quantity_before, ledger.quantity_available,
    )
    return ledger


async def add_stock(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    quantity: int,
    reference: str | None = None,
    notes: str | None = None,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    def apply(ledger: InventoryLedger) -> int:
        ledger.add_stock(quantity)
        return quantity

    return await _mutate(
        repositories, lock, product_id, MovementType.STOCK_IN,
        apply, reference, notes, lease_seconds,
    )


async def return_stock(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    quantity: int,
    reference: str | None = None,
    notes: str | None = None,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    """返品を引当可能在庫に戻す。"""
    def apply(ledger: InventoryLedger) -> int:
        ledger.add_stock(quantity)
        return quantity

    return await _mutate(
        repositories, lock, product_id, MovementType.RETURNED,
        apply, reference, notes, lease_seconds,
    )


async def remove_stock(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    quantity: int,
    damaged: bool = False,
    reference: str | None = None,
    notes: str | None = None,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    def apply(ledger: InventoryLedger) -> int:
        ledger.remove_stock(quantity)
        return quantity

    movement_type = MovementType.DAMAGED if damaged else MovementType.STOCK_OUT
    return await _mutate(
        repositories, lock, product_id, movement_type,
        apply, reference, notes, lease_seconds,
    )


async def adjust_stock(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    new_available: int,
    reference: str | None = None,
    notes: str | None = None,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    """棚卸結果で引当可能数を上書きする。ムーブメントの quantity は差分の絶対値。"""
    def apply(ledger: InventoryLedger) -> int:
        delta = abs(new_available - ledger.quantity_available)
        ledger.adjust_stock(new_available)
        return delta

    return await _mutate(
        repositories, lock, product_id, MovementType.ADJUSTMENT,
        apply, reference, notes, lease_seconds,
    )


async def update_reorder_level(
    repositories: RepositoryFactory,
    lock: DistributedLock,
    product_id: UUID,
    reorder_level: int,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> InventoryLedger:
    async with lock.hold(product_lock_key(product_id), lease_seconds):
        async with unit_of_work(repositories) as repo:
            ledger = await repo.get_ledger(product_id)
            if ledger is None:
                raise ProductNotFound(product_id)
            ledger.update_reorder_level(reorder_level)
            await repo.update_ledger(ledger)
    return ledger
