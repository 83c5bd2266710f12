# Файл: src/billing_backoffice/__init__.py

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker

from .client import BillingClient
from .config import get_settings, BillingClientConfig, PostgresConfig, BillingConfig, SchedulerConfig
from .db.uow import TransactionRunner
from .repositories import (
    UserRepository,
    TokenBlacklistRepository,
    PlanRepository,
    SubscriptionRepository,
    PendingChargeRepository,
    PaymentRepository,
    LedgerRepository,
)
from .services.cache import TTLCache
from .services.dashboard import DashboardAggregator
from .services.provisioning import SubscriptionProvisioningService
from .services.reconciliation import PaymentReconciliationService
from .services.scheduler import ScheduledJobs
from .exceptions import *


def build_engine(postgres: PostgresConfig) -> AsyncEngine:
    """AsyncEngine с пулом из настроек. Для не-PostgreSQL DSN параметры пула и server_settings не передаются."""
    dsn = postgres.get_pg_dsn()
    if not dsn.startswith("postgresql"):
        return create_async_engine(dsn)
    return create_async_engine(
        dsn,
        pool_size=postgres.pool_size,
        max_overflow=postgres.max_overflow,
        pool_timeout=postgres.pool_timeout,
        pool_recycle=postgres.pool_recycle,
        pool_pre_ping=postgres.pool_pre_ping,
        connect_args={
            "server_settings": {
                "application_name": postgres.application_name
            }
        },
    )


def create_billing_client(
    config: Optional[BillingClientConfig] = None,
    engine: Optional[AsyncEngine] = None,
) -> BillingClient:
    """
    Фабричная функция для создания и конфигурации BillingClient.

    :param config: Единый объект с настройками.
                   Если не предоставлен, используются переменные окружения.
    :param engine: Готовый AsyncEngine (например, в тестах). Если передан,
                   клиент его не закрывает.
    :return: Сконфигурированный экземпляр BillingClient.
    """
    if config is None:
        s = get_settings()
        config = BillingClientConfig(postgres=s.postgres, billing=s.billing, scheduler=s.scheduler)

    owned_engine = None
    if engine is None:
        engine = build_engine(config.postgres)
        owned_engine = engine

    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    billing = config.billing
    runner = TransactionRunner(session_factory, base_delay=billing.retry_base_delay)
    cache = TTLCache(ttl_seconds=billing.dashboard_cache_ttl)

    # Репозитории stateless: сессию получают в каждом вызове.
    user_repo = UserRepository()
    plan_repo = PlanRepository()
    subscription_repo = SubscriptionRepository()
    charge_repo = PendingChargeRepository()
    payment_repo = PaymentRepository()
    ledger_repo = LedgerRepository()
    blacklist_repo = TokenBlacklistRepository()

    reconciliation = PaymentReconciliationService(
        runner=runner,
        users=user_repo,
        charges=charge_repo,
        payments=payment_repo,
        ledger=ledger_repo,
        subscriptions=subscription_repo,
        cache=cache,
        money_ceiling=billing.money_ceiling,
        max_retries=billing.max_retries,
    )
    provisioning = SubscriptionProvisioningService(
        runner=runner,
        users=user_repo,
        plans=plan_repo,
        subscriptions=subscription_repo,
        charges=charge_repo,
        cache=cache,
        money_ceiling=billing.money_ceiling,
    )
    dashboard = DashboardAggregator(
        runner=runner,
        users=user_repo,
        subscriptions=subscription_repo,
        charges=charge_repo,
        payments=payment_repo,
        cache=cache,
    )
    jobs = ScheduledJobs(
        runner=runner,
        charges=charge_repo,
        blacklist=blacklist_repo,
        cache=cache,
        reminder_days=billing.reminder_days,
    )

    return BillingClient(
        runner=runner,
        user_repo=user_repo,
        plan_repo=plan_repo,
        subscription_repo=subscription_repo,
        charge_repo=charge_repo,
        payment_repo=payment_repo,
        ledger_repo=ledger_repo,
        blacklist_repo=blacklist_repo,
        reconciliation=reconciliation,
        provisioning=provisioning,
        dashboard=dashboard,
        jobs=jobs,
        engine=owned_engine,
        money_ceiling=billing.money_ceiling,
    )


__all__ = [
    "BillingClient", "create_billing_client", "build_engine",
    "BillingClientConfig", "PostgresConfig", "BillingConfig", "SchedulerConfig",
    "BillingError", "ValidationError", "InvalidTransitionError", "NotFoundError", "ConflictError",
    "UnauthorizedError", "ForbiddenError", "DatabaseError", "TransientConflictError",
]
