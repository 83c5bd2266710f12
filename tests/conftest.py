import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from billing_backoffice import create_billing_client, BillingClientConfig, BillingConfig
from billing_backoffice.db.base import Base
from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.models.enums import UserRole
from billing_backoffice.repositories import (
    LedgerRepository, PaymentRepository, PendingChargeRepository, PlanRepository, SubscriptionRepository,
    TokenBlacklistRepository, UserRepository,
)
from billing_backoffice.services.cache import TTLCache
from billing_backoffice.services.dashboard import DashboardAggregator
from billing_backoffice.services.provisioning import SubscriptionProvisioningService
from billing_backoffice.services.reconciliation import PaymentReconciliationService
from billing_backoffice.services.scheduler import ScheduledJobs

# BILLING_TEST_POSTGRES=1 - прогон на настоящем PostgreSQL в Docker (testcontainers).
USE_POSTGRES = os.getenv("BILLING_TEST_POSTGRES") == "1"

FIXED_NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Управляемые "часы" для сервисов: now() в UTC, сдвиг вручную."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture(scope="session")
def database_url():
    if not USE_POSTGRES:
        yield "sqlite+aiosqlite:///:memory:"
        return
    from testcontainers.postgres import PostgresContainer

    print("\nStarting PostgreSQL test container...")
    with PostgresContainer("postgres:15", driver="asyncpg") as postgres:
        yield postgres.get_connection_url()
    print("\nPostgreSQL test container stopped.")


@pytest_asyncio.fixture(scope="function")
async def db_engine(database_url):
    """
    Движок тестовой БД с созданными таблицами.
    После теста все таблицы удаляются для полной изоляции.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url, poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
    else:
        engine = create_async_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def sleeps():
    """Сюда fake-sleep складывает запрошенные задержки."""
    return []


@pytest.fixture
def runner(session_factory, sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return TransactionRunner(session_factory, base_delay=0.1, sleep=fake_sleep)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def cache(monotonic):
    return TTLCache(ttl_seconds=300, clock=monotonic)


@pytest.fixture
def repos():
    return SimpleNamespace(
        users=UserRepository(),
        plans=PlanRepository(),
        subscriptions=SubscriptionRepository(),
        charges=PendingChargeRepository(),
        payments=PaymentRepository(),
        ledger=LedgerRepository(),
        blacklist=TokenBlacklistRepository(),
    )


@pytest.fixture
def reconciliation(runner, repos, cache, clock):
    return PaymentReconciliationService(
        runner=runner,
        users=repos.users,
        charges=repos.charges,
        payments=repos.payments,
        ledger=repos.ledger,
        subscriptions=repos.subscriptions,
        cache=cache,
        clock=clock,
    )


@pytest.fixture
def provisioning(runner, repos, cache, clock):
    return SubscriptionProvisioningService(
        runner=runner,
        users=repos.users,
        plans=repos.plans,
        subscriptions=repos.subscriptions,
        charges=repos.charges,
        cache=cache,
        clock=clock,
    )


@pytest.fixture
def jobs(runner, repos, cache, clock):
    return ScheduledJobs(runner=runner, charges=repos.charges, blacklist=repos.blacklist, cache=cache, clock=clock)


@pytest.fixture
def dashboard(runner, repos, cache, clock):
    return DashboardAggregator(
        runner=runner,
        users=repos.users,
        subscriptions=repos.subscriptions,
        charges=repos.charges,
        payments=repos.payments,
        cache=cache,
        clock=clock,
    )


@pytest.fixture
def make_user(runner, repos):
    """Фабрика пользователей: await make_user("ana@example.com") -> UUID."""
    counter = {"n": 0}

    async def _make(email: str | None = None, role: UserRole = UserRole.SUBSCRIBER):
        counter["n"] += 1
        address = email or f"user{counter['n']}@example.com"

        async def _work(session):
            user = await repos.users.create_user(session, f"User {counter['n']}", address, "secret-pass", role)
            return user.id

        return await runner.run(_work)

    return _make


@pytest.fixture
def make_charge(runner, repos):
    """Разовое начисление напрямую через репозиторий (без сервисов)."""

    async def _make(user_id, amount, due_date, description="Cobrança avulsa", subscription_id=None):
        async def _work(session):
            charge = await repos.charges.create(
                session, user_id, Decimal(amount), due_date, description, subscription_id=subscription_id
            )
            return charge.id

        return await runner.run(_work)

    return _make


@pytest_asyncio.fixture(scope="function")
async def billing_client(db_engine):
    """BillingClient из фабрики поверх тестового движка, без задержек между повторами."""
    config = BillingClientConfig(billing=BillingConfig(retry_base_delay=0.0))
    client = create_billing_client(config, engine=db_engine)
    yield client
    await client.aclose()
