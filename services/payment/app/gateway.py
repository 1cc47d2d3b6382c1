"""
Payment Service: 決済ゲートウェイ

HttpPaymentGateway は外部ゲートウェイを httpx で呼び出す。
「カード拒否」などの業務的な失敗は GatewayResult(success=False) で返し、
通信エラーや 5xx は GatewayError として送出する。

PAYMENT_GATEWAY_URL が未設定の環境では MockPaymentGateway を使う。
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import httpx
from pydantic import BaseModel

from .errors import GatewayError

logger = logging.getLogger(__name__)


class GatewayResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    error_message: str | None = None
    gateway_response: str | None = None


class PaymentGateway(ABC):
    @abstractmethod
    async def process_payment(self, order_id: UUID, amount: Decimal) -> GatewayResult: ...


class HttpPaymentGateway(PaymentGateway):
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def process_payment(self, order_id: UUID, amount: Decimal) -> GatewayResult:
        logger.info("Charging order %s amount %s via %s", order_id, amount, self.base_url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/charges",
                    json={"order_id": str(order_id), "amount": str(amount)},
                )
                if resp.status_code == 402:
                    # 402 Payment Required = カード拒否などの業務的な失敗
                    return GatewayResult(
                        success=False,
                        error_message=resp.json().get("error", "Payment declined"),
                        gateway_response=resp.text,
                    )
                resp.raise_for_status()
                transaction_id = resp.json()["transaction_id"]
        except httpx.HTTPError as e:
            raise GatewayError(f"Payment gateway request failed: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise GatewayError(f"Malformed payment gateway response: {e}") from e

        if not isinstance(transaction_id, str) or not transaction_id.strip():
            raise GatewayError("Malformed payment gateway response: missing transaction_id")

        return GatewayResult(
            success=True,
            transaction_id=transaction_id,
            gateway_response=resp.text,
        )


class MockPaymentGateway(PaymentGateway):
    """成功率 success_rate で承認を返すローカル用ゲートウェイ"""

    ERROR_MESSAGES = (
        "Insufficient funds",
        "Card declined",
        "Invalid card details",
        "Payment timeout",
        "Gateway temporarily unavailable",
    )

    def __init__(
        self,
        success_rate: float = 0.8,
        delay_seconds: float = 0.5,
        rng: random.Random | None = None,
    ) -> None:
        self.success_rate = success_rate
        self.delay_seconds = delay_seconds
        self.rng = rng or random.Random()

    async def process_payment(self, order_id: UUID, amount: Decimal) -> GatewayResult:
        logger.info(
            "Processing payment through mock gateway. Order: %s, Amount: %s", order_id, amount
        )
        await asyncio.sleep(self.delay_seconds)

        if self.rng.random() < self.success_rate:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
            return GatewayResult(
                success=True,
                transaction_id=f"TXN-{stamp}-{uuid4().hex[:8].upper()}",
                gateway_response=f"Payment approved for amount {amount}",
            )

        message = self.rng.choice(self.ERROR_MESSAGES)
        return GatewayResult(
            success=False,
            error_message=message,
            gateway_response=f"Payment declined: {message}",
        )
