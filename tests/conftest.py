import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import asyncio

import pytest
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from erp.auth.jwt_handler import create_access_token
from erp.auth.permissions import format_permission
from erp.core.database import get_async_session
from erp.db.base import Base
from erp.main import create_app
from erp.schemas.inventory.product import ProductCreate
from erp.services.concurrency import StockLockRegistry
from erp.services.inventory.ledger_service import InventoryLedgerService
from erp.services.inventory.product_service import ProductService
import erp.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePublisher:
    """Collects realtime events instead of pushing them to sockets"""

    def __init__(self):
        self.events = []

    async def publish(self, channel, payload):
        self.events.append((channel, payload))
        return 0

    def on(self, channel):
        return [payload for name, payload in self.events if name == channel]


@pytest.fixture
async def session_maker():
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def locks():
    return StockLockRegistry()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def ledger(db_session, locks, publisher):
    return InventoryLedgerService(db_session, locks=locks, publisher=publisher, retry_backoff=0)


@pytest.fixture
def make_product(db_session, ledger):
    """Create a product whose opening stock is posted to the ledger"""
    counter = {"n": 0}

    async def factory(stock: int = 0, **overrides):
        counter["n"] += 1
        data = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "cost": "2.50",
            "price": "4.00",
            "min_stock": 0,
            "opening_stock": stock,
        }
        data.update(overrides)
        service = ProductService(db_session, ledger)
        return await service.create_product(ProductCreate(**data), current_user_id=1)

    return factory


@pytest.fixture
def app(session_maker):
    application = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    application.dependency_overrides[get_async_session] = override_get_db
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict:
    """Bearer token for a user with full access"""
    token = create_access_token(1, permissions=[format_permission("system", "admin")])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def viewer_headers() -> dict:
    """Bearer token for a user without write permissions"""
    token = create_access_token(2, permissions=[format_permission("inventory", "read")])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def wait_until():
    async def waiter(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.002)

    return waiter
