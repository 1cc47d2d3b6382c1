"""
Tests for the Redis idempotency store.
"""

from datetime import timedelta

import pytest

from services.payment.app.idempotency import RedisIdempotencyStore


@pytest.fixture
def store(redis):
    return RedisIdempotencyStore(redis, ttl=timedelta(hours=1))


async def test_unknown_key(store):
    assert not await store.exists("order-1")
    assert await store.get("order-1") is None


async def test_save_then_get(store, redis):
    assert await store.save("order-1", '{"success": true}')

    assert await store.exists("order-1")
    assert await store.get("order-1") == '{"success": true}'
    assert "idempotency:payment:order-1" in redis.store


async def test_first_writer_wins(store):
    assert await store.save("order-1", "first")
    assert not await store.save("order-1", "second")

    assert await store.get("order-1") == "first"


async def test_record_expires_after_ttl(store, clock):
    await store.save("order-1", "first")

    clock.advance(timedelta(hours=1).total_seconds())

    assert not await store.exists("order-1")
    assert await store.save("order-1", "second")


async def test_only_one_claim_wins(store):
    assert await store.claim("order-1")
    assert not await store.claim("order-1")
    assert await store.claim("order-2")


async def test_claim_does_not_count_as_recorded_result(store):
    await store.claim("order-1")

    assert not await store.exists("order-1")
    assert await store.save("order-1", "result")


async def test_released_claim_can_be_taken_again(store):
    await store.claim("order-1")
    await store.release_claim("order-1")

    assert await store.claim("order-1")
