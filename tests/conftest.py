"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import hashlib
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hookline.models.api_key import ApiKey
from hookline.models.base import Base
from hookline.models.order import ExternalOrder
from hookline.models.webhook import WebhookDelivery  # noqa: F401
from hookline.services.delivery_executor import DeliveryExecutor
from hookline.services.delivery_store import DeliveryStore
from hookline.services.destination_service import ApiKeyDestinationResolver
from hookline.services.webhook_service import WebhookDispatcher
from hookline.worker import RetryScheduler


WEBHOOK_URL = "https://merchant.example.com/webhooks"
WEBHOOK_SECRET = "test-secret-key-for-hmac"
RAW_API_KEY = "sk_test_0123456789"


class FakeClock:
    """Controllable replacement for utc_now."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.now = moment


class FakeDestination:
    """Scripted webhook endpoint for httpx.MockTransport.

    Each entry in `responses` is a status code, or an exception instance to
    raise instead of answering. The last entry repeats once the script runs
    out. Every request received is kept in `requests`.
    """

    def __init__(self, responses: list | None = None, delay: float = 0.0) -> None:
        self.responses = list(responses or [200])
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        index = min(len(self.requests), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response, text=f"status {response}")

    @property
    def bodies(self) -> list[bytes]:
        return [request.content for request in self.requests]


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """File-backed SQLite database so concurrent sessions really compete."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hookline.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()


@pytest.fixture
def store(session_factory, clock) -> DeliveryStore:
    return DeliveryStore(session_factory, claim_lease_seconds=90, clock=clock)


@pytest.fixture
def resolver(session_factory) -> ApiKeyDestinationResolver:
    return ApiKeyDestinationResolver(session_factory)


@pytest.fixture
def executor(store, resolver, destination, clock) -> DeliveryExecutor:
    return DeliveryExecutor(
        store,
        resolver,
        timeout_seconds=5,
        transport=httpx.MockTransport(destination),
        clock=clock,
    )


@pytest.fixture
def dispatcher(store, resolver, executor) -> WebhookDispatcher:
    return WebhookDispatcher(store, resolver, executor, max_attempts=5)


@pytest.fixture
def scheduler(store, executor) -> RetryScheduler:
    return RetryScheduler(
        store,
        executor,
        interval_seconds=0.01,
        batch_size=100,
        pending_grace_seconds=120,
        max_concurrent=10,
    )


async def create_api_key(
    session_factory,
    raw_key: str = RAW_API_KEY,
    webhook_url: str | None = WEBHOOK_URL,
    webhook_secret: str | None = WEBHOOK_SECRET,
) -> ApiKey:
    async with session_factory() as db:
        api_key = ApiKey(
            name="Test merchant",
            key_hash=hashlib.sha256(raw_key.encode()).hexdigest(),
            webhook_url=webhook_url,
            webhook_secret=webhook_secret,
        )
        db.add(api_key)
        await db.commit()
        await db.refresh(api_key)
        return api_key


async def create_order(session_factory, api_key: ApiKey | None, order_number: str = "OX-1001") -> ExternalOrder:
    async with session_factory() as db:
        order = ExternalOrder(
            api_key_id=api_key.id if api_key else None,
            order_number=order_number,
            status="AWAITING_PAYMENT",
        )
        db.add(order)
        await db.commit()
        await db.refresh(order)
        return order


@pytest_asyncio.fixture
async def api_key(session_factory) -> ApiKey:
    return await create_api_key(session_factory)


@pytest_asyncio.fixture
async def order(session_factory, api_key) -> ExternalOrder:
    return await create_order(session_factory, api_key)
