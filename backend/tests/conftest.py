"""
Centralized Test Configuration.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient, ASGITransport
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.dependencies import get_fiscal_service
from backend.app.domain.fiscal.fiscal_service import FiscalService
from backend.app.domain.fiscal.afip_client import AfipClient
from backend.app.models.customer import Customer
from backend.app.models.enums import CustomerType, SaleStatus, InvoiceType, IvaType
from backend.app.models.sale import Sale, SaleItem
from backend.app.schemas.fiscal import VoucherAuthorization
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class MockLock:
    """asyncio-backed stand-in for redis.asyncio.lock.Lock."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._held = None

    async def acquire(self):
        lock = self.redis.locks.setdefault(self.name, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
        except asyncio.TimeoutError:
            return False
        self._held = lock
        self.redis.acquired.append(self.name)
        return True

    async def extend(self, additional_time, replace_ttl=False):
        if self._held is None or self.redis.expire_locks:
            raise LockError("Cannot extend a lock that's no longer owned")
        self.redis.extended.append((self.name, additional_time))
        return True

    async def release(self):
        if self._held is None:
            raise LockError("Cannot release an unlocked lock")
        self._held.release()
        self._held = None


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.locks = {}
        self.acquired = []
        self.extended = []
        self.created = []
        self.expire_locks = False
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    def lock(self, name, timeout=None, blocking_timeout=None):
        lock = MockLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)
        self.created.append(lock)
        return lock

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.locks = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


CAE = "74123456789012"
CAE_EXPIRY = datetime(2026, 10, 29).date()

_sale_numbers = itertools.count(1)


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def afip_client():
    """Authority client double: last number 41, authorizes number 42."""
    client = AsyncMock(spec=AfipClient)
    client.get_last_voucher_number.return_value = 41
    client.create_voucher.return_value = VoucherAuthorization(
        cae=CAE, cae_expiry=CAE_EXPIRY, voucher_number=42
    )
    client.get_voucher_info.return_value = None
    return client


@pytest.fixture
def fiscal_service(afip_client, redis_client):
    return FiscalService(afip_client=afip_client, redis=redis_client)


@pytest.fixture(autouse=True)
def apply_overrides(redis_client, fiscal_service):
    """Apply dependency overrides for each test."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client

    async def override_get_fiscal_service():
        return fiscal_service

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_fiscal_service] = override_get_fiscal_service
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    """Independent sessions for tests that run requests side by side."""
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def make_customer(db_session):
    async def _make(
        business_name="Importadora Sur SRL",
        customer_type=CustomerType.RESPONSABLE_INSCRIPTO,
        tax_id="30-71234567-1",
    ):
        customer = Customer(business_name=business_name, customer_type=customer_type, tax_id=tax_id)
        db_session.add(customer)
        await db_session.commit()
        await db_session.refresh(customer)
        return customer
    return _make


@pytest.fixture
def make_sale(db_session):
    """White, confirmed sale with one 21% item: 1000 + 210 = 1210 unless overridden."""
    async def _make(customer, items=None, **overrides):
        items = items if items is not None else [
            SaleItem(
                description="Bomba centrifuga",
                quantity=Decimal("1"),
                unit_price=Decimal("1000"),
                subtotal=Decimal("1000"),
                iva_type=IvaType.IVA_21,
                iva_amount=Decimal("210"),
                total_amount=Decimal("1210"),
            )
        ]
        fields = dict(
            sale_number=f"V-{next(_sale_numbers):08d}",
            customer_id=customer.id,
            status=SaleStatus.CONFIRMED,
            is_white_invoice=True,
            invoice_type=InvoiceType.FACTURA_A,
            point_of_sale="0001",
            sale_date=datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc),
            taxed_amount=Decimal("1000"),
            non_taxed_amount=Decimal("0"),
            exempt_amount=Decimal("0"),
            tax_amount=Decimal("210"),
            gross_income_perception=Decimal("0"),
            total=Decimal("1210"),
        )
        fields.update(overrides)
        sale = Sale(items=items, **fields)
        db_session.add(sale)
        await db_session.commit()
        return sale.id
    return _make
