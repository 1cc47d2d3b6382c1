"""
Inventory Service: Redis Pub/Sub サブスクライバー

order_events / payment_events を購読し、Saga ハンドラへ振り分ける。

注意: 配信は at-least-once 前提。同じイベントが再送されても
ハンドラ側 (既存リザベーションのスキップ、状態チェック) で吸収する。
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError

from .events import ORDER_EVENTS, PAYMENT_EVENTS, OrderCreated, PaymentCompleted, PaymentFailed
from .handlers import ReservationCoordinator, SagaResult

logger = logging.getLogger(__name__)

CHANNELS = (ORDER_EVENTS, PAYMENT_EVENTS)


async def dispatch(
    coordinator: ReservationCoordinator, event_type: str, data: dict
) -> SagaResult | None:
    """イベントタイプに応じたハンドラを呼び出す。未知のイベントは無視する。"""
    route = {
        "OrderCreated": (OrderCreated, coordinator.handle_order_created),
        "PaymentFailed": (PaymentFailed, coordinator.handle_payment_failed),
        "PaymentCompleted": (PaymentCompleted, coordinator.handle_payment_completed),
    }.get(event_type)
    if not route:
        return None
    model, handler = route
    return await handler(model.model_validate(data))


async def run_subscriber(
    redis: aioredis.Redis,
    coordinator: ReservationCoordinator,
    shutdown_event: asyncio.Event,
) -> None:
    """shutdown_event がセットされるまでメッセージを処理し続ける。"""
    pubsub = redis.pubsub()
    await pubsub.subscribe(*CHANNELS)
    logger.info("Subscribed to %s", ", ".join(CHANNELS))

    try:
        while not shutdown_event.is_set():
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message and message["type"] == "message":
                try:
                    event = json.loads(message["data"])
                    event_type = event.get("event_type")
                    result = await dispatch(coordinator, event_type, event.get("data", {}))
                    if result is not None:
                        logger.info(
                            "Handled %s: success=%s error=%s",
                            event_type, result.success, result.error,
                        )
                except (json.JSONDecodeError, ValidationError):
                    logger.exception("Discarding malformed message on %s", message["channel"])
                except Exception:
                    logger.exception("Failed to process event")
            else:
                await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(*CHANNELS)
        await pubsub.aclose()


async def run_expiry_sweeper(
    coordinator: ReservationCoordinator,
    interval_seconds: float,
    shutdown_event: asyncio.Event,
) -> None:
    while not shutdown_event.is_set():
        try:
            await coordinator.expire_reservations()
        except Exception:
            logger.exception("Reservation expiry sweep failed")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
