# Файл: billing_backoffice/services/dashboard.py

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import PendingChargeORM
from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.exceptions import NotFoundError
from billing_backoffice.models import (
    ChargeBucket, DashboardMetrics, DelinquentUser, OverdueChargeDetail, PendingChargeInDB,
    SubscriptionBalance, SubscriptionInDB, UserInfo, UserReport,
)
from billing_backoffice.models.enums import ChargeStatus, OPEN_CHARGE_STATUSES, SubscriptionStatus
from billing_backoffice.repositories import (
    PaymentRepository, PendingChargeRepository, SubscriptionRepository, UserRepository,
)
from billing_backoffice.services import validators
from billing_backoffice.services.cache import TTLCache

logger = logging.getLogger(__name__)

METRICS_KEY = "metrics"
ACTIVE_SUBSCRIPTIONS_KEY = "active_subscriptions"
OUTSTANDING_CHARGES_KEY = "outstanding_charges"
DELINQUENT_USERS_KEY = "delinquent_users"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _overdue_detail(charge: PendingChargeORM, today: date) -> OverdueChargeDetail:
    return OverdueChargeDetail(
        id=charge.id,
        amount=Decimal(charge.amount),
        due_date=charge.due_date,
        days_late=(today - charge.due_date).days,
    )


class DashboardAggregator:
    """
    Сводки для административной панели. Четыре основных отчёта кэшируются
    в TTLCache под своими именами (списки ещё и с limit в ключе);
    отчёт по пользователю считается всегда заново.
    """

    def __init__(
        self,
        runner: TransactionRunner,
        users: UserRepository,
        subscriptions: SubscriptionRepository,
        charges: PendingChargeRepository,
        payments: PaymentRepository,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._runner = runner
        self._users = users
        self._subscriptions = subscriptions
        self._charges = charges
        self._payments = payments
        self.cache = cache if cache is not None else TTLCache()
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def invalidate(self, name: Optional[str] = None) -> None:
        self.cache.invalidate(name)

    # ――― кэшируемые отчёты ――― #

    async def metrics(self) -> DashboardMetrics:
        return await self.cache.get_or_compute(METRICS_KEY, self._compute_metrics)

    async def active_subscriptions(self, limit: int = 10) -> List[SubscriptionBalance]:
        async def _compute() -> List[SubscriptionBalance]:
            return await self._runner.run(lambda s: self._load_active_subscriptions(s, limit))

        return await self.cache.get_or_compute(f"{ACTIVE_SUBSCRIPTIONS_KEY}:{limit}", _compute)

    async def outstanding_charges(self, limit: int = 20) -> List[PendingChargeInDB]:
        async def _compute() -> List[PendingChargeInDB]:
            return await self._runner.run(lambda s: self._load_outstanding(s, limit))

        return await self.cache.get_or_compute(f"{OUTSTANDING_CHARGES_KEY}:{limit}", _compute)

    async def delinquent_users(self) -> List[DelinquentUser]:
        async def _compute() -> List[DelinquentUser]:
            return await self._runner.run(self._load_delinquent)

        return await self.cache.get_or_compute(DELINQUENT_USERS_KEY, _compute)

    async def _compute_metrics(self) -> DashboardMetrics:
        now = self._clock()
        today = now.astimezone(timezone.utc).date()
        month_start = today.replace(day=1)
        month_end = month_start + relativedelta(months=1, days=-1)

        async def _work(session: AsyncSession) -> DashboardMetrics:
            by_status = await self._subscriptions.count_by_status(session)
            by_periodicity = await self._subscriptions.count_by_periodicity(session)
            revenue = await self._payments.sum_between(session, month_start, month_end)
            totals = await self._charges.totals_by_status(session)
            pending = ChargeBucket(count=totals[ChargeStatus.PENDING][0], amount=totals[ChargeStatus.PENDING][1])
            overdue = ChargeBucket(count=totals[ChargeStatus.OVERDUE][0], amount=totals[ChargeStatus.OVERDUE][1])
            return DashboardMetrics(
                total_subscriptions=sum(by_status.values()),
                subscriptions_by_status=by_status,
                current_month_revenue=revenue,
                pending=pending,
                overdue=overdue,
                total_open_amount=pending.amount + overdue.amount,
                by_periodicity=by_periodicity,
                computed_at=now,
            )

        metrics = await self._runner.run(_work)
        logger.debug(f"Dashboard metrics recomputed: {metrics.total_subscriptions} subscriptions")
        return metrics

    async def _load_active_subscriptions(self, session: AsyncSession, limit: int) -> List[SubscriptionBalance]:
        rows = await self._subscriptions.list_active_with_open_balance(session, limit=limit)
        return [
            SubscriptionBalance(
                subscription=SubscriptionInDB.model_validate(sub),
                open_charges=int(n),
                open_amount=Decimal(str(amount)),
            )
            for sub, n, amount in rows
        ]

    async def _load_outstanding(self, session: AsyncSession, limit: int) -> List[PendingChargeInDB]:
        rows = await self._charges.list_outstanding(session, limit=limit)
        return [PendingChargeInDB.model_validate(r) for r in rows]

    async def _load_delinquent(self, session: AsyncSession) -> List[DelinquentUser]:
        today = self._today()
        overdue = await self._charges.list_overdue_before(session, today)
        grouped: Dict[UUID, List[PendingChargeORM]] = defaultdict(list)
        for charge in overdue:
            grouped[charge.user_id].append(charge)

        report = []
        for user_id, charges in grouped.items():
            user = await self._users.get_by_id(session, user_id)
            details = [_overdue_detail(c, today) for c in charges]
            report.append(
                DelinquentUser(
                    user=UserInfo.model_validate(user) if user else None,
                    user_id=user_id,
                    overdue_count=len(details),
                    overdue_amount=sum((d.amount for d in details), Decimal("0")),
                    max_days_late=max(d.days_late for d in details),
                    charges=details,
                )
            )
        report.sort(key=lambda r: (-r.overdue_amount, str(r.user_id)))
        return report

    # ――― отчёт по пользователю (без кэша) ――― #

    async def user_report(self, user_id: Any) -> UserReport:
        uid = validators.parse_uuid(user_id, "user_id")
        today = self._today()

        async def _work(session: AsyncSession) -> UserReport:
            user = await self._users.get_by_id(session, uid)
            if user is None:
                raise NotFoundError("User", uid)
            subscriptions = await self._subscriptions.list_by_user(session, uid)
            open_charges = await self._charges.list_by_user(session, uid, statuses=OPEN_CHARGE_STATUSES)
            upcoming = await self._charges.list_upcoming_for_user(session, uid, today)

            active = [s for s in subscriptions if s.status is SubscriptionStatus.ACTIVE]
            overdue = [_overdue_detail(c, today) for c in open_charges if c.due_date < today]
            upcoming_models = [PendingChargeInDB.model_validate(c) for c in upcoming]
            return UserReport(
                user=UserInfo.model_validate(user),
                active_subscriptions=len(active),
                canceled_subscriptions=sum(1 for s in subscriptions if s.status is SubscriptionStatus.CANCELED),
                expected_recurring_amount=sum((Decimal(s.amount) for s in active), Decimal("0")),
                overdue=overdue,
                overdue_amount=sum((d.amount for d in overdue), Decimal("0")),
                upcoming=upcoming_models,
                upcoming_amount=sum((c.amount for c in upcoming_models), Decimal("0")),
            )

        return await self._runner.run(_work)
