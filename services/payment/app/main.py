"""
Payment Service: FastAPI エントリーポイント

inventory_events の InventoryReserved を購読して課金する。
HTTP は支払いレコードの参照だけ。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .events import EventPublisher
from .gateway import HttpPaymentGateway, MockPaymentGateway
from .handlers import PaymentCoordinator
from .idempotency import RedisIdempotencyStore
from .repositories import PaymentRepository
from .subscriber import run_subscriber

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
IDEMPOTENCY_TTL_HOURS = float(os.environ.get("IDEMPOTENCY_TTL_HOURS", "24"))
PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL")
PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "30"))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def payment_repository():
    async with async_session() as session:
        yield PaymentRepository(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    if PAYMENT_GATEWAY_URL:
        gateway = HttpPaymentGateway(PAYMENT_GATEWAY_URL, PAYMENT_GATEWAY_TIMEOUT)
    else:
        gateway = MockPaymentGateway()
    coordinator = PaymentCoordinator(
        payment_repository,
        gateway,
        RedisIdempotencyStore(redis_pool, ttl=timedelta(hours=IDEMPOTENCY_TTL_HOURS)),
        EventPublisher(redis_pool),
    )

    shutdown_event = asyncio.Event()
    subscriber_task = asyncio.create_task(
        run_subscriber(redis_pool, coordinator, shutdown_event)
    )
    yield
    shutdown_event.set()
    subscriber_task.cancel()
    try:
        await subscriber_task
    except asyncio.CancelledError:
        pass
    await redis_pool.aclose()


app = FastAPI(title="Payment Service", lifespan=lifespan)


@app.get("/queries/payments/{order_id}")
async def query_payments(order_id: UUID):
    """注文に紐づく支払いレコード（通常は 1 件）"""
    async with payment_repository() as repo:
        payments = await repo.list_by_order(order_id)
    return [payment.to_dict() for payment in payments]


@app.get("/queries/payments-failed")
async def query_failed_payments():
    async with payment_repository() as repo:
        payments = await repo.list_failed()
    return [payment.to_dict() for payment in payments]


@app.get("/health")
async def health():
    return {"status": "ok", "service": "payment-service"}
