"""Common test fixtures for the chat room service tests."""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backend import RedisBackend
from database import DurableStore
from notifier import BroadcastNotifier
from room_service import RoomService


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_client():
    """A private in-memory Redis per test."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache(redis_client) -> RedisBackend:
    return RedisBackend(redis_client)


@pytest.fixture
def durable():
    """In-memory SQLite standing in for PostgreSQL, shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = DurableStore(engine)
    store.create_all()
    yield store
    store.close()


@pytest.fixture
def service(cache, redis_client, clock) -> RoomService:
    """Cache-only service."""
    return RoomService(cache, notifier=BroadcastNotifier(redis_client), clock=clock)


@pytest.fixture
def dual_service(cache, durable, redis_client, clock) -> RoomService:
    """Service replicating into the durable store inline."""
    return RoomService(cache, durable=durable, notifier=BroadcastNotifier(redis_client), clock=clock)
