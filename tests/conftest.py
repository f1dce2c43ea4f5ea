"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio

from delivery_engine.engine.earnings import EarningsAggregator
from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.models.actor import Actor, ActorRole
from delivery_engine.models.task import Task
from delivery_engine.state.manager import MirrorKey, MirrorStore, actor_namespace
from tests.fakes import FakeBackend

# Wednesday, mid-month, mid-day: every bucket boundary is well away.
NOW = datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    """Create an isolated in-memory Redis server."""
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(
    redis_server: fakeredis.FakeServer,
) -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """Create a Redis client bound to the test server."""
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def partner() -> Actor:
    """The logged-in delivery partner."""
    return Actor(id="partner-1", role=ActorRole.DELIVERY)


@pytest.fixture
def rival() -> Actor:
    """A second delivery partner competing for the same tasks."""
    return Actor(id="partner-2", role=ActorRole.DELIVERY)


@pytest_asyncio.fixture
async def store(
    redis_client: fakeredis.FakeAsyncRedis,
    partner: Actor,
) -> AsyncGenerator[MirrorStore, None]:
    """Create a mirror store namespaced to the partner."""
    mirror = MirrorStore(redis_client, namespace=actor_namespace(partner.id))
    yield mirror
    await mirror.disconnect()


@pytest.fixture
def backend() -> FakeBackend:
    """Create an in-memory backend seeded with two open tasks."""
    return FakeBackend(
        [
            Task(id="T001", order_id="ORD-1", delivery_fee=Decimal("60"), confirmation_code="1234"),
            Task(id="T002", order_id="ORD-2", delivery_fee=Decimal("45"), confirmation_code="5678"),
        ]
    )


def make_engine(
    actor: Actor,
    store: MirrorStore,
    gateway=None,
) -> TaskLifecycleEngine:
    """Engine with a fixed clock and UTC earnings buckets."""
    return TaskLifecycleEngine(
        actor,
        store,
        gateway,
        aggregator=EarningsAggregator(tz=timezone.utc),
        clock=fixed_clock,
    )


@pytest_asyncio.fixture
async def offline_engine(
    partner: Actor,
    store: MirrorStore,
) -> AsyncGenerator[TaskLifecycleEngine, None]:
    """Engine without a gateway, seeded from the mirror."""
    await store.set(
        MirrorKey.AVAILABLE_TASKS,
        [
            {"id": "T001", "deliveryFee": 60, "otp": "1234", "vendor": "Spice Garden"},
            {"id": "T002", "deliveryFee": 45, "otp": "5678"},
        ],
    )
    engine = make_engine(partner, store)
    await engine.load()
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def online_engine(
    partner: Actor,
    store: MirrorStore,
    backend: FakeBackend,
) -> AsyncGenerator[TaskLifecycleEngine, None]:
    """Engine talking to the in-memory backend."""
    engine = make_engine(partner, store, backend.gateway(partner.id))
    await engine.load()
    await engine.go_online()
    yield engine
    await engine.close()
