import logging
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.exceptions import DatabaseError, NotFoundError, UnauthorizedError, ValidationError
from billing_backoffice.models import (
    DashboardMetrics, DelinquentUser, LedgerEntryInDB, LedgerTotals, PaymentInDB, PendingChargeInDB, PlanInDB,
    ProvisionedSubscription, ReconciliationResult, SubscriptionBalance, SubscriptionInDB, UserInfo, UserReport,
)
from billing_backoffice.models.enums import ChargeStatus, LedgerKind, Periodicity, UserRole
from billing_backoffice.repositories import (
    LedgerRepository, PaymentRepository, PendingChargeRepository, PlanRepository, SubscriptionRepository,
    TokenBlacklistRepository, UserRepository,
)
from billing_backoffice.security import token_expiry, verify_password
from billing_backoffice.services import validators
from billing_backoffice.services.dashboard import DashboardAggregator
from billing_backoffice.services.provisioning import SubscriptionProvisioningService
from billing_backoffice.services.reconciliation import PaymentReconciliationService
from billing_backoffice.services.scheduler import ScheduledJobs

logger = logging.getLogger(__name__)


class BillingClient:
    """
    Единая точка доступа для бизнес-логики биллинга.
    HTTP-слой и CLI работают только через этот класс; репозитории и сервисы собирает фабрика.
    """

    def __init__(
        self,
        runner: TransactionRunner,
        user_repo: UserRepository,
        plan_repo: PlanRepository,
        subscription_repo: SubscriptionRepository,
        charge_repo: PendingChargeRepository,
        payment_repo: PaymentRepository,
        ledger_repo: LedgerRepository,
        blacklist_repo: TokenBlacklistRepository,
        reconciliation: PaymentReconciliationService,
        provisioning: SubscriptionProvisioningService,
        dashboard: DashboardAggregator,
        jobs: ScheduledJobs,
        engine: Optional[AsyncEngine] = None,
        money_ceiling: Decimal = validators.DEFAULT_MONEY_CEILING,
    ):
        self.runner = runner
        self.user_repo = user_repo
        self.plan_repo = plan_repo
        self.subscription_repo = subscription_repo
        self.charge_repo = charge_repo
        self.payment_repo = payment_repo
        self.ledger_repo = ledger_repo
        self.blacklist_repo = blacklist_repo
        self.reconciliation = reconciliation
        self.provisioning = provisioning
        self.dashboard = dashboard
        self.jobs = jobs
        self._engine = engine
        self._money_ceiling = money_ceiling

    async def check_connection(self) -> None:
        """Проверяет доступность PostgreSQL. Бросает DatabaseError при сбое."""
        try:
            await self.runner.run(lambda s: s.execute(text("SELECT 1")))
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseError(f"Database connection failed: {e}") from e

    async def aclose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # ――― users ――― #

    async def create_user(
        self, name: str, email: str, password: str, role: Any = UserRole.SUBSCRIBER
    ) -> UserInfo:
        name = validators.parse_text(name, "name")
        email = validators.parse_text(email, "email")
        if "@" not in email:
            raise ValidationError("email must be a valid e-mail address")
        password = validators.parse_text(password, "password")
        user_role = validators.parse_enum(UserRole, role, "role")

        async def _work(session: AsyncSession) -> UserInfo:
            user = await self.user_repo.create_user(session, name, email.lower(), password, user_role)
            return UserInfo.model_validate(user)

        return await self.runner.run(_work)

    async def get_user(self, user_id: Any) -> UserInfo:
        uid = validators.parse_uuid(user_id, "user_id")

        async def _work(session: AsyncSession) -> UserInfo:
            user = await self.user_repo.get_by_id(session, uid)
            if user is None:
                raise NotFoundError("User", uid)
            return UserInfo.model_validate(user)

        return await self.runner.run(_work)

    async def authenticate(self, email: str, password: str) -> UserInfo:
        """Проверяет пару e-mail/пароль. Одинаковая ошибка для неизвестного e-mail и неверного пароля."""

        async def _work(session: AsyncSession):
            return await self.user_repo.get_by_email(session, (email or "").strip().lower())

        user = await self.runner.run(_work)
        if user is None or not verify_password(password or "", user.hashed_password):
            raise UnauthorizedError("Incorrect email or password")
        return UserInfo.model_validate(user)

    async def delete_user(self, user_id: Any) -> None:
        uid = validators.parse_uuid(user_id, "user_id")

        async def _work(session: AsyncSession) -> bool:
            return await self.user_repo.delete_user(session, uid)

        if not await self.runner.run(_work):
            raise NotFoundError("User", uid)
        self.dashboard.invalidate()

    # ――― plans ――― #

    async def create_plan(self, name: str, description: str, price: Any, periodicity: Any) -> PlanInDB:
        name = validators.parse_text(name, "name", max_length=100)
        description = validators.parse_text(description, "description", max_length=2000, required=False) or ""
        amount = validators.parse_money(price, self._money_ceiling, "price")
        period = validators.parse_enum(Periodicity, periodicity, "periodicity")

        async def _work(session: AsyncSession) -> PlanInDB:
            plan = await self.plan_repo.create_plan(session, name, description, amount, period)
            return PlanInDB.model_validate(plan)

        return await self.runner.run(_work)

    async def list_active_plans(self, limit: int = 50, offset: int = 0) -> List[PlanInDB]:
        async def _work(session: AsyncSession) -> List[PlanInDB]:
            plans = await self.plan_repo.list_active_plans(session, limit=limit, offset=offset)
            return [PlanInDB.model_validate(p) for p in plans]

        return await self.runner.run(_work)

    async def retire_plan(self, plan_id: Any) -> PlanInDB:
        pid = validators.parse_uuid(plan_id, "plan_id")

        async def _work(session: AsyncSession) -> PlanInDB:
            plan = await self.plan_repo.retire_plan(session, pid)
            if plan is None:
                raise NotFoundError("Plan", pid)
            return PlanInDB.model_validate(plan)

        return await self.runner.run(_work)

    # ――― subscriptions ――― #

    async def create_subscription(
        self, user_id: Any, amount: Any, periodicity: Any, start_date: Any, due_day: Any = 10
    ) -> ProvisionedSubscription:
        return await self.provisioning.create_with_schedule(user_id, amount, periodicity, start_date, due_day)

    async def create_subscription_from_plan(
        self, user_id: Any, plan_id: Any, start_date: Any, due_day: Any = 10
    ) -> ProvisionedSubscription:
        return await self.provisioning.create_from_plan(user_id, plan_id, start_date, due_day)

    async def cancel_subscription(self, subscription_id: Any) -> int:
        return await self.provisioning.cancel(subscription_id)

    async def list_user_subscriptions(self, user_id: Any) -> List[SubscriptionInDB]:
        uid = validators.parse_uuid(user_id, "user_id")

        async def _work(session: AsyncSession) -> List[SubscriptionInDB]:
            rows = await self.subscription_repo.list_by_user(session, uid)
            return [SubscriptionInDB.model_validate(s) for s in rows]

        return await self.runner.run(_work)

    # ――― pending charges ――― #

    async def create_charge(
        self, user_id: Any, amount: Any, due_date: Any, description: str, subscription_id: Any = None
    ) -> PendingChargeInDB:
        """Разовое начисление вне графика подписки."""
        uid = validators.parse_uuid(user_id, "user_id")
        value = validators.parse_money(amount, self._money_ceiling)
        due = validators.parse_date(due_date, "due_date")
        text_ = validators.parse_text(
            description, "description", max_length=validators.MAX_CHARGE_DESCRIPTION_LENGTH
        )
        sid = validators.parse_uuid(subscription_id, "subscription_id") if subscription_id else None

        async def _work(session: AsyncSession) -> PendingChargeInDB:
            if not await self.user_repo.exists(session, uid):
                raise NotFoundError("User", uid)
            if sid is not None:
                subscription = await self.subscription_repo.get(session, sid)
                if subscription is None:
                    raise NotFoundError("Subscription", sid)
                if subscription.user_id != uid:
                    raise ValidationError(f"Subscription {sid} does not belong to user {uid}")
            charge = await self.charge_repo.create(session, uid, value, due, text_, subscription_id=sid)
            return PendingChargeInDB.model_validate(charge)

        charge = await self.runner.run(_work)
        self.dashboard.invalidate()
        return charge

    async def get_charge(self, charge_id: Any) -> PendingChargeInDB:
        cid = validators.parse_uuid(charge_id, "pending_charge_id")

        async def _work(session: AsyncSession) -> PendingChargeInDB:
            charge = await self.charge_repo.get(session, cid)
            if charge is None:
                raise NotFoundError("Pending charge", cid)
            return PendingChargeInDB.model_validate(charge)

        return await self.runner.run(_work)

    async def list_user_charges(self, user_id: Any, statuses: Optional[List[Any]] = None) -> List[PendingChargeInDB]:
        uid = validators.parse_uuid(user_id, "user_id")
        wanted = [validators.parse_enum(ChargeStatus, s, "status") for s in statuses] if statuses else None

        async def _work(session: AsyncSession) -> List[PendingChargeInDB]:
            rows = await self.charge_repo.list_by_user(session, uid, statuses=wanted)
            return [PendingChargeInDB.model_validate(c) for c in rows]

        return await self.runner.run(_work)

    async def list_charges_by_status(self, status: Any) -> List[PendingChargeInDB]:
        wanted = validators.parse_enum(ChargeStatus, status, "status")

        async def _work(session: AsyncSession) -> List[PendingChargeInDB]:
            rows = await self.charge_repo.list_by_status(session, wanted)
            return [PendingChargeInDB.model_validate(c) for c in rows]

        return await self.runner.run(_work)

    # ――― payments ――― #

    async def reconcile_payment(
        self,
        user_id: Any,
        amount: Any,
        payment_date: Any,
        method: Any,
        note: Any = None,
        pending_charge_id: Any = None,
    ) -> ReconciliationResult:
        return await self.reconciliation.reconcile(user_id, amount, payment_date, method, note, pending_charge_id)

    async def list_user_payments(self, user_id: Any) -> List[PaymentInDB]:
        uid = validators.parse_uuid(user_id, "user_id")

        async def _work(session: AsyncSession) -> List[PaymentInDB]:
            rows = await self.payment_repo.list_by_user(session, uid)
            return [PaymentInDB.model_validate(p) for p in rows]

        return await self.runner.run(_work)

    # ――― ledger ――― #

    async def record_outflow(self, user_id: Any, amount: Any, entry_date: Any, description: str) -> LedgerEntryInDB:
        """Ручной расход (возврат, списание). Приходы пишет только сверка платежей."""
        uid = validators.parse_uuid(user_id, "user_id")
        value = validators.parse_money(amount, self._money_ceiling)
        when = validators.parse_date(entry_date, "entry_date")
        text_ = validators.parse_text(description, "description")

        async def _work(session: AsyncSession) -> LedgerEntryInDB:
            if not await self.user_repo.exists(session, uid):
                raise NotFoundError("User", uid)
            entry = await self.ledger_repo.append(session, uid, LedgerKind.OUTFLOW, value, when, text_)
            return LedgerEntryInDB.model_validate(entry)

        entry = await self.runner.run(_work)
        logger.info(f"Recorded outflow of {value} for user {uid}")
        return entry

    async def ledger_totals(self, user_id: Any = None) -> LedgerTotals:
        uid = validators.parse_uuid(user_id, "user_id") if user_id else None

        async def _work(session: AsyncSession) -> tuple[Decimal, Decimal]:
            return await self.ledger_repo.totals(session, user_id=uid)

        inflow, outflow = await self.runner.run(_work)
        return LedgerTotals(inflow=inflow, outflow=outflow, balance=inflow - outflow)

    # ――― dashboard ――― #

    async def dashboard_metrics(self) -> DashboardMetrics:
        return await self.dashboard.metrics()

    async def active_subscriptions(self, limit: int = 10) -> List[SubscriptionBalance]:
        return await self.dashboard.active_subscriptions(limit=limit)

    async def outstanding_charges(self, limit: int = 20) -> List[PendingChargeInDB]:
        return await self.dashboard.outstanding_charges(limit=limit)

    async def delinquent_users(self) -> List[DelinquentUser]:
        return await self.dashboard.delinquent_users()

    async def user_report(self, user_id: Any) -> UserReport:
        return await self.dashboard.user_report(user_id)

    # ――― tokens ――― #

    async def logout(self, token: str) -> None:
        """Отзывает токен до момента его истечения."""
        if not token:
            raise ValidationError("token is required")
        expires_at = token_expiry(token)

        async def _work(session: AsyncSession) -> None:
            await self.blacklist_repo.add(session, token, expires_at)

        await self.runner.run(_work)
        logger.info(f"Token blacklisted until {expires_at.isoformat()}")

    async def is_token_blacklisted(self, token: str) -> bool:
        async def _work(session: AsyncSession) -> bool:
            return await self.blacklist_repo.is_blacklisted(session, token)

        return await self.runner.run(_work)
