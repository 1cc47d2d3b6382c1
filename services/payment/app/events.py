"""
Payment Service: イベント定義

受信: inventory_events → InventoryReserved
発行: payment_events   → PaymentCompleted / PaymentFailed
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

INVENTORY_EVENTS = "inventory_events"
PAYMENT_EVENTS = "payment_events"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InventoryReserved(BaseModel):
    """注文の在庫引き当てが完了した（課金を開始する）"""
    order_id: UUID
    amount: Decimal
    timestamp: datetime = Field(default_factory=_now)


class PaymentCompleted(BaseModel):
    order_id: UUID
    payment_id: UUID
    transaction_id: str
    amount: Decimal
    timestamp: datetime = Field(default_factory=_now)


class PaymentFailed(BaseModel):
    """支払いが失敗した（Inventory 側で引き当てを解放する）"""
    order_id: UUID
    payment_id: UUID | None = None
    reason: str
    timestamp: datetime = Field(default_factory=_now)


class EventPublisher:
    """Redis Pub/Sub への fire-and-forget 発行"""

    def __init__(self, redis: aioredis.Redis, channel: str = PAYMENT_EVENTS) -> None:
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
