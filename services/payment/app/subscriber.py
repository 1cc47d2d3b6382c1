"""
Payment Service: Redis Pub/Sub サブスクライバー

inventory_events を購読し、InventoryReserved だけを支払い Saga に渡す。
再送された InventoryReserved は冪等性ストアで吸収される。
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError

from .events import INVENTORY_EVENTS, InventoryReserved
from .handlers import PaymentCoordinator

logger = logging.getLogger(__name__)


async def run_subscriber(
    redis: aioredis.Redis,
    coordinator: PaymentCoordinator,
    shutdown_event: asyncio.Event,
) -> None:
    pubsub = redis.pubsub()
    await pubsub.subscribe(INVENTORY_EVENTS)
    logger.info("Subscribed to %s channel", INVENTORY_EVENTS)

    try:
        while not shutdown_event.is_set():
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message and message["type"] == "message":
                try:
                    event = json.loads(message["data"])
                    if event.get("event_type") != "InventoryReserved":
                        continue
                    result = await coordinator.handle_inventory_reserved(
                        InventoryReserved.model_validate(event.get("data", {}))
                    )
                    logger.info(
                        "Handled InventoryReserved for order %s: success=%s",
                        result.order_id, result.success,
                    )
                except (json.JSONDecodeError, ValidationError):
                    logger.exception("Discarding malformed message on %s", INVENTORY_EVENTS)
                except Exception:
                    logger.exception("Failed to process event")
            else:
                await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(INVENTORY_EVENTS)
        await pubsub.aclose()
