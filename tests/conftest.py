"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- A RateConfigStore bound to the test session
- Test data factories (users, businesses, orders, wallets, payments)
"""
import pytest
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from ledger.db.database import Base, get_db, get_audit_db
from ledger.db.models.user import User, UserRole
from ledger.db.models.business import Business
from ledger.db.models.order import Order, OrderStatus, PaymentMethod
from ledger.db.models.wallet import Wallet
from ledger.db.models.payment import Payment, PaymentStatus
from ledger.db.models.system_setting import SystemSetting, COMMISSIONS_CATEGORY
from ledger.api.dependencies.services import get_rate_store
from ledger.domain.services.rate_config_store import RateConfigStore
from ledger.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _enable_sqlite_savepoints(engine) -> None:
    """
    The sqlite driver only emits BEGIN lazily, which makes RELEASE SAVEPOINT
    commit the whole transaction. Emit BEGIN ourselves so begin_nested()
    behaves the way it does on PostgreSQL.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    _enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Session factory for RateConfigStore that hands out the test session without closing it"""
    @asynccontextmanager
    async def _factory():
        yield db_session

    return _factory


@pytest.fixture
def rate_store(session_factory) -> RateConfigStore:
    return RateConfigStore(session_factory=session_factory, ttl_seconds=300)


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, rate_store: RateConfigStore):
    """Create test client with database and rate store overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_db] = override_get_db
    app.dependency_overrides[get_rate_store] = lambda: rate_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

_phone_counter = 0


def _next_phone() -> str:
    global _phone_counter
    _phone_counter += 1
    return f"+52155{_phone_counter:08d}"


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        name: str = "Test User",
        role: UserRole = UserRole.CUSTOMER,
        phone_number: str | None = None,
        is_active: bool = True,
        blocked_reason: str | None = None,
    ) -> User:
        user = User(
            name=name,
            role=role,
            phone_number=phone_number or _next_phone(),
            is_active=is_active,
            blocked_reason=blocked_reason,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def business_factory(db_session: AsyncSession, user_factory):
    """Factory for creating a business, with a fresh owner unless one is given"""
    async def _create_business(
        owner_id: int | None = None,
        name: str = "Taqueria El Centro",
    ) -> Business:
        if owner_id is None:
            owner = await user_factory(name="Owner", role=UserRole.BUSINESS_OWNER)
            owner_id = owner.id
        business = Business(owner_id=owner_id, name=name)
        db_session.add(business)
        await db_session.commit()
        await db_session.refresh(business)
        return business

    return _create_business


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """
    Factory for creating test orders.

    Defaults describe a consistent order: product base 8500 with the 15%
    markup gives a subtotal of 9775, plus a 2500 delivery fee.
    """
    async def _create_order(
        business_id: int,
        driver_id: int | None = None,
        customer_id: int | None = None,
        subtotal: int = 9775,
        delivery_fee: int = 2500,
        tax: int = 0,
        total: int | None = None,
        product_base: int | None = 8500,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        status: OrderStatus = OrderStatus.PICKED_UP,
        platform_fee: int | None = None,
        business_earnings: int | None = None,
        delivery_earnings: int | None = None,
        commission_distributed_at: datetime | None = None,
        delivered_at: datetime | None = None,
        created_at: datetime | None = None,
        cash_settled: bool = False,
    ) -> Order:
        order = Order(
            business_id=business_id,
            driver_id=driver_id,
            customer_id=customer_id,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            tax=tax,
            total=total if total is not None else subtotal + delivery_fee + tax,
            product_base=product_base,
            payment_method=payment_method,
            status=status,
            platform_fee=platform_fee,
            business_earnings=business_earnings,
            delivery_earnings=delivery_earnings,
            commission_distributed_at=commission_distributed_at,
            delivered_at=delivered_at,
            cash_settled=cash_settled,
        )
        if created_at is not None:
            order.created_at = created_at
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
def wallet_factory(db_session: AsyncSession):
    """
    Factory for wallets with a starting state.

    Writes the row directly, without ledger entries, so only use it where
    the test does not audit the transaction history.
    """
    async def _create_wallet(
        user_id: int,
        balance: int = 0,
        cash_owed: int = 0,
    ) -> Wallet:
        wallet = Wallet(
            user_id=user_id,
            balance=balance,
            pending_balance=0,
            cash_owed=cash_owed,
            total_earned=balance,
            total_withdrawn=0,
        )
        db_session.add(wallet)
        await db_session.commit()
        await db_session.refresh(wallet)
        return wallet

    return _create_wallet


@pytest.fixture
def payment_factory(db_session: AsyncSession):
    """Factory for creating payments"""
    async def _create_payment(
        order_id: int,
        amount: int,
        status: PaymentStatus = PaymentStatus.SUCCEEDED,
        provider_reference: str | None = None,
    ) -> Payment:
        payment = Payment(
            order_id=order_id,
            amount=amount,
            status=status,
            provider_reference=provider_reference,
        )
        db_session.add(payment)
        await db_session.commit()
        await db_session.refresh(payment)
        return payment

    return _create_payment


@pytest.fixture
def commission_setting_factory(db_session: AsyncSession):
    """Write a raw commissions row, bypassing validation"""
    async def _create_setting(key: str, value: str) -> SystemSetting:
        setting = SystemSetting(category=COMMISSIONS_CATEGORY, key=key, value=value)
        db_session.add(setting)
        await db_session.commit()
        return setting

    return _create_setting


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_driver(user_factory) -> User:
    """Create a sample delivery driver"""
    return await user_factory(name="Sample Driver", role=UserRole.DELIVERY_DRIVER)


@pytest.fixture
async def sample_business(business_factory) -> Business:
    """Create a sample business with its owner"""
    return await business_factory()
