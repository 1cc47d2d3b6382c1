"""
Inventory Service: イベント定義

受信 (Inbound):
  order_events    → OrderCreated
  payment_events  → PaymentFailed / PaymentCompleted

発行 (Outbound, inventory_events):
  StockReserved / StockReservationFailed / StockReleased / InventoryReserved

メッセージは {"event_type": ..., "data": {...}} の JSON エンベロープ。
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_EVENTS = "order_events"
PAYMENT_EVENTS = "payment_events"
INVENTORY_EVENTS = "inventory_events"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Inbound ─────────────────────────────────────


class OrderItem(BaseModel):
    product_id: UUID
    quantity: int


class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: UUID
    items: list[OrderItem]
    total_amount: Decimal | None = None
    timestamp: datetime = Field(default_factory=_now)


class PaymentFailed(BaseModel):
    """支払いが失敗した（引き当てを解放する）"""
    order_id: UUID
    payment_id: UUID | None = None
    reason: str = ""
    timestamp: datetime = Field(default_factory=_now)


class PaymentCompleted(BaseModel):
    """支払いが完了した（引き当てを確定する）"""
    order_id: UUID
    payment_id: UUID
    transaction_id: str
    amount: Decimal
    timestamp: datetime = Field(default_factory=_now)


# ── Outbound ────────────────────────────────────


class StockReserved(BaseModel):
    reservation_id: UUID
    order_id: UUID
    product_id: UUID
    quantity: int
    reserved_at: datetime


class StockReservationFailed(BaseModel):
    order_id: UUID
    product_id: UUID
    requested_quantity: int
    available_quantity: int
    reason: str
    timestamp: datetime = Field(default_factory=_now)


class StockReleased(BaseModel):
    """引き当てが解放された（補償トランザクション）"""
    order_id: UUID
    product_id: UUID
    quantity: int
    reason: str
    timestamp: datetime = Field(default_factory=_now)


class InventoryReserved(BaseModel):
    """注文の全明細の引き当てが完了した（Payment Saga の入力）"""
    order_id: UUID
    amount: Decimal
    timestamp: datetime = Field(default_factory=_now)


class EventPublisher:
    """
    Redis Pub/Sub への fire-and-forget 発行。

    配信確認は取らない。発行に失敗しても台帳は既にコミット済みなので、
    ログに残して Saga の処理は続ける。
    """

    def __init__(self, redis: aioredis.Redis, channel: str = INVENTORY_EVENTS) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, event: BaseModel) -> None:
        event_type = type(event).__name__
        try:
            await self.redis.publish(
                self.channel,
                json.dumps(
                    {
                        "event_type": event_type,
                        "data": event.model_dump(mode="json"),
                    },
                    default=str,
                ),
            )
        except RedisError:
            logger.exception("Failed to publish %s to %s", event_type, self.channel)
