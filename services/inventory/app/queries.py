"""
Inventory Service: クエリハンドラ (CQRS Read 側)
"""

from uuid import UUID

from .repositories import RepositoryFactory


async def get_ledger(repositories: RepositoryFactory, product_id: UUID) -> dict | None:
    async with repositories() as repo:
        ledger = await repo.get_ledger(product_id)
    return ledger.to_dict() if ledger else None


async def check_stock(
    repositories: RepositoryFactory, product_id: UUID, quantity: int
) -> dict | None:
    async with repositories() as repo:
        ledger = await repo.get_ledger(product_id)
    if not ledger:
        return None
    return {
        "product_id": str(product_id),
        "quantity_available": ledger.quantity_available,
        "quantity_reserved": ledger.quantity_reserved,
        "can_fulfill": ledger.can_reserve(quantity),
    }


async def list_low_stock(repositories: RepositoryFactory) -> list[dict]:
    async with repositories() as repo:
        ledgers = await repo.list_low_stock()
    return [ledger.to_dict() for ledger in ledgers]


async def list_movements(
    repositories: RepositoryFactory, product_id: UUID, limit: int = 100
) -> list[dict]:
    """新しい順"""
    async with repositories() as repo:
        movements = await repo.list_movements(product_id, limit)
    return [movement.to_dict() for movement in movements]


async def list_reservations(repositories: RepositoryFactory, order_id: UUID) -> list[dict]:
    async with repositories() as repo:
        reservations = await repo.list_reservations_by_order(order_id)
    return [reservation.to_dict() for reservation in reservations]
