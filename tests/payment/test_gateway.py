"""
Tests for the payment gateways.

HttpPaymentGateway is exercised through httpx.MockTransport.
"""

import json
import random
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from services.payment.app.errors import GatewayError
from services.payment.app.gateway import HttpPaymentGateway, MockPaymentGateway


def gateway_with(handler):
    return HttpPaymentGateway("https://gateway.test/", transport=httpx.MockTransport(handler))


class TestHttpPaymentGateway:
    async def test_approved_charge(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"transaction_id": "TXN-42"})

        order_id = uuid4()
        result = await gateway_with(handler).process_payment(order_id, Decimal("12.50"))

        assert result.success
        assert result.transaction_id == "TXN-42"
        assert seen["url"] == "https://gateway.test/charges"
        assert seen["body"] == {"order_id": str(order_id), "amount": "12.50"}

    async def test_declined_charge(self):
        def handler(request):
            return httpx.Response(402, json={"error": "Insufficient funds"})

        result = await gateway_with(handler).process_payment(uuid4(), Decimal("1.00"))

        assert not result.success
        assert result.error_message == "Insufficient funds"
        assert result.transaction_id is None

    async def test_server_error_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(GatewayError):
            await gateway_with(handler).process_payment(uuid4(), Decimal("1.00"))

    async def test_connection_error_raises_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError):
            await gateway_with(handler).process_payment(uuid4(), Decimal("1.00"))

    async def test_malformed_response_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(200, json={"status": "ok"})

        with pytest.raises(GatewayError) as exc_info:
            await gateway_with(handler).process_payment(uuid4(), Decimal("1.00"))
        assert "Malformed" in exc_info.value.message

    @pytest.mark.parametrize("body", [{"transaction_id": None}, {"transaction_id": "  "}, ["TXN-1"]])
    async def test_approval_without_transaction_id_raises_gateway_error(self, body):
        def handler(request):
            return httpx.Response(200, json=body)

        with pytest.raises(GatewayError) as exc_info:
            await gateway_with(handler).process_payment(uuid4(), Decimal("1.00"))
        assert "Malformed" in exc_info.value.message


class TestMockPaymentGateway:
    async def test_always_approves_at_full_success_rate(self):
        gateway = MockPaymentGateway(success_rate=1.0, delay_seconds=0)

        result = await gateway.process_payment(uuid4(), Decimal("5.00"))

        assert result.success
        assert result.transaction_id.startswith("TXN-")

    async def test_always_declines_at_zero_success_rate(self):
        gateway = MockPaymentGateway(success_rate=0.0, delay_seconds=0, rng=random.Random(7))

        result = await gateway.process_payment(uuid4(), Decimal("5.00"))

        assert not result.success
        assert result.error_message in MockPaymentGateway.ERROR_MESSAGES
