"""
Inventory Service: FastAPI エントリーポイント

在庫台帳サービス。引き当て Saga は Redis Pub/Sub のイベントで駆動され、
HTTP は台帳への入出庫コマンドと参照用クエリだけを提供する。

起動時 (lifespan):
  1. Redis 接続プールを開く
  2. order_events / payment_events のサブスクライバを開始
  3. 期限切れリザベーションのスイーパを開始
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, queries
from .errors import ErrorKind, InventoryError
from .events import EventPublisher
from .handlers import ReservationCoordinator
from .lock import RedisDistributedLock
from .repositories import InventoryRepository
from .subscriber import run_expiry_sweeper, run_subscriber

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOCK_LEASE_SECONDS = float(os.environ.get("LOCK_LEASE_SECONDS", "30"))
LOCK_WAIT_SECONDS = float(os.environ.get("LOCK_WAIT_SECONDS", "0"))
RESERVATION_TTL_MINUTES = int(os.environ.get("RESERVATION_TTL_MINUTES", "30"))
RESERVATION_ROLLBACK_ON_FAILURE = (
    os.environ.get("RESERVATION_ROLLBACK_ON_FAILURE", "true").lower() in ("1", "true", "yes")
)
EXPIRY_SWEEP_SECONDS = float(os.environ.get("EXPIRY_SWEEP_SECONDS", "60"))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None
lock: RedisDistributedLock | None = None


@asynccontextmanager
async def inventory_repository():
    async with async_session() as session:
        yield InventoryRepository(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool, lock
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    lock = RedisDistributedLock(redis_pool)
    coordinator = ReservationCoordinator(
        inventory_repository,
        lock,
        EventPublisher(redis_pool),
        lock_lease_seconds=LOCK_LEASE_SECONDS,
        lock_wait_seconds=LOCK_WAIT_SECONDS,
        reservation_minutes=RESERVATION_TTL_MINUTES,
        rollback_on_failure=RESERVATION_ROLLBACK_ON_FAILURE,
    )

    shutdown_event = asyncio.Event()
    tasks = [
        asyncio.create_task(run_subscriber(redis_pool, coordinator, shutdown_event)),
        asyncio.create_task(
            run_expiry_sweeper(coordinator, EXPIRY_SWEEP_SECONDS, shutdown_event)
        ),
    ]
    yield
    shutdown_event.set()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await redis_pool.aclose()


app = FastAPI(title="Inventory Service", lifespan=lifespan)

STATUS_BY_KIND = {
    ErrorKind.PRODUCT_NOT_FOUND: 404,
    ErrorKind.RESERVATION_NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.CONCURRENT_MODIFICATION: 409,
    ErrorKind.LOCK_UNAVAILABLE: 423,
    ErrorKind.INVALID_QUANTITY: 400,
    ErrorKind.OVER_RELEASE: 400,
}


def _http_error(e: InventoryError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(e.kind, 500),
        detail={"error": e.kind.value, "message": e.message},
    )


# ── Request Models ───────────────────────────────


class CreateLedgerRequest(BaseModel):
    product_id: UUID
    product_name: str
    sku: str
    initial_quantity: int
    reorder_level: int = 10
    max_stock_level: int = 1000


class StockRequest(BaseModel):
    quantity: int
    reference: str | None = None
    notes: str | None = None


class RemoveStockRequest(StockRequest):
    damaged: bool = False


class AdjustStockRequest(BaseModel):
    new_available: int
    notes: str | None = None


class ReorderLevelRequest(BaseModel):
    reorder_level: int


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/inventory", status_code=201)
async def cmd_create_ledger(req: CreateLedgerRequest):
    """初回入庫（台帳作成）"""
    try:
        ledger = await commands.create_ledger(
            inventory_repository,
            lock,
            req.product_id,
            req.product_name,
            req.sku,
            req.initial_quantity,
            req.reorder_level,
            req.max_stock_level,
            lease_seconds=LOCK_LEASE_SECONDS,
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


@app.post("/commands/inventory/{product_id}/add-stock")
async def cmd_add_stock(product_id: UUID, req: StockRequest):
    try:
        ledger = await commands.add_stock(
            inventory_repository, lock, product_id, req.quantity,
            req.reference, req.notes, LOCK_LEASE_SECONDS,
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


@app.post("/commands/inventory/{product_id}/return-stock")
async def cmd_return_stock(product_id: UUID, req: StockRequest):
    try:
        ledger = await commands.return_stock(
            inventory_repository, lock, product_id, req.quantity,
            req.reference, req.notes, LOCK_LEASE_SECONDS,
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


@app.post("/commands/inventory/{product_id}/remove-stock")
async def cmd_remove_stock(product_id: UUID, req: RemoveStockRequest):
    try:
        ledger = await commands.remove_stock(
            inventory_repository, lock, product_id, req.quantity,
            req.damaged, req.reference, req.notes, LOCK_LEASE_SECONDS,
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


@app.post("/commands/inventory/{product_id}/adjust")
async def cmd_adjust_stock(product_id: UUID, req: AdjustStockRequest):
    """棚卸調整"""
    try:
        ledger = await commands.adjust_stock(
            inventory_repository, lock, product_id, req.new_available,
            notes=req.notes, lease_seconds=LOCK_LEASE_SECONDS,
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


@app.put("/commands/inventory/{product_id}/reorder-level")
async def cmd_update_reorder_level(product_id: UUID, req: ReorderLevelRequest):
    try:
        ledger = await commands.update_reorder_level(
            inventory_repository, lock, product_id, req.reorder_level, LOCK_LEASE_SECONDS
        )
    except InventoryError as e:
        raise _http_error(e)
    return ledger.to_dict()


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/inventory/low-stock")
async def query_low_stock():
    return await queries.list_low_stock(inventory_repository)


@app.get("/queries/inventory/{product_id}")
async def query_get_ledger(product_id: UUID):
    ledger = await queries.get_ledger(inventory_repository, product_id)
    if not ledger:
        raise HTTPException(404, "Product not found in inventory")
    return ledger


@app.get("/queries/inventory/{product_id}/check")
async def query_check_stock(product_id: UUID, quantity: int = 1):
    result = await queries.check_stock(inventory_repository, product_id, quantity)
    if not result:
        raise HTTPException(404, "Product not found in inventory")
    return result


@app.get("/queries/inventory/{product_id}/movements")
async def query_movements(product_id: UUID, limit: int = 100):
    return await queries.list_movements(inventory_repository, product_id, limit)


@app.get("/queries/reservations/{order_id}")
async def query_reservations(order_id: UUID):
    return await queries.list_reservations(inventory_repository, order_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "inventory-service"}
