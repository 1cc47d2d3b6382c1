"""
Shared fixtures.

Every test gets a fresh in-memory inventory state, lock and Redis double;
nothing here talks to a real database or Redis server.
"""

from uuid import uuid4

import pytest

from services.inventory.app.events import EventPublisher
from services.inventory.app.handlers import ReservationCoordinator
from services.payment.app.events import EventPublisher as PaymentEventPublisher
from services.payment.app.handlers import PaymentCoordinator
from services.payment.app.idempotency import RedisIdempotencyStore

from tests.mocks import (
    FakeClock,
    FakeRedis,
    InMemoryDistributedLock,
    InventoryState,
    MockPaymentRepository,
    StubPaymentGateway,
    inventory_repository_factory,
    payment_repository_factory,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def state():
    return InventoryState()


@pytest.fixture
def repositories(state):
    return inventory_repository_factory(state)


@pytest.fixture
def lock():
    return InMemoryDistributedLock()


@pytest.fixture
def publisher(redis):
    return EventPublisher(redis)


@pytest.fixture
def coordinator(repositories, lock, publisher):
    return ReservationCoordinator(repositories, lock, publisher)


@pytest.fixture
def product_a(state):
    product_id = uuid4()
    state.add_ledger(product_id, available=100)
    return product_id


@pytest.fixture
def product_b(state):
    product_id = uuid4()
    state.add_ledger(product_id, available=1)
    return product_id


@pytest.fixture
def payment_repo():
    return MockPaymentRepository()


@pytest.fixture
def gateway():
    return StubPaymentGateway()


@pytest.fixture
def idempotency(redis):
    return RedisIdempotencyStore(redis)


@pytest.fixture
def payment_coordinator(payment_repo, gateway, idempotency, redis):
    return PaymentCoordinator(
        payment_repository_factory(payment_repo),
        gateway,
        idempotency,
        PaymentEventPublisher(redis),
    )
