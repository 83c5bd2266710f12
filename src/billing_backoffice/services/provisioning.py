# Файл: billing_backoffice/services/provisioning.py

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import PendingChargeORM
from billing_backoffice.db.uow import TransactionRunner
from billing_backoffice.exceptions import NotFoundError, ValidationError
from billing_backoffice.models import PendingChargeInDB, ProvisionedSubscription, SubscriptionInDB
from billing_backoffice.models.enums import ChargeStatus, Periodicity, SubscriptionStatus
from billing_backoffice.repositories import (
    PendingChargeRepository, PlanRepository, SubscriptionRepository, UserRepository,
)
from billing_backoffice.services import validators
from billing_backoffice.services.cache import TTLCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Installment:
    number: int
    count: int
    due_date: date
    description: str


def build_schedule(periodicity: Periodicity, start_date: date, due_day: int) -> List[Installment]:
    """
    Расписание парцел на один год вперёд.

    Срок i-й парцелы: start_date + i*шаг месяцев, день принудительно равен due_day.
    Первая парцела может оказаться раньше start_date (день не подрезается).
    """
    count, stride = periodicity.schedule
    schedule = []
    for i in range(count):
        due = (start_date + relativedelta(months=i * stride)).replace(day=due_day)
        schedule.append(
            Installment(
                number=i + 1,
                count=count,
                due_date=due,
                description=f"Assinatura {periodicity.label} - Parcela {i + 1}/{count} - {due.month:02d}/{due.year}",
            )
        )
    return schedule


class SubscriptionProvisioningService:
    """Создание подписки вместе с годовым графиком начислений, и её отмена."""

    def __init__(
        self,
        runner: TransactionRunner,
        users: UserRepository,
        plans: PlanRepository,
        subscriptions: SubscriptionRepository,
        charges: PendingChargeRepository,
        cache: Optional[TTLCache] = None,
        money_ceiling: Decimal = validators.DEFAULT_MONEY_CEILING,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._runner = runner
        self._users = users
        self._plans = plans
        self._subscriptions = subscriptions
        self._charges = charges
        self._cache = cache
        self._money_ceiling = money_ceiling
        self._clock = clock

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.invalidate()

    async def create_with_schedule(
        self,
        user_id: Any,
        amount: Any,
        periodicity: Any,
        start_date: Any,
        due_day: Any = 10,
        plan_id: Any = None,
    ) -> ProvisionedSubscription:
        uid = validators.parse_uuid(user_id, "user_id")
        value = validators.parse_money(amount, self._money_ceiling)
        period = validators.parse_enum(Periodicity, periodicity, "periodicity")
        start = validators.parse_date(start_date, "start_date")
        day = validators.parse_due_day(due_day)
        pid = validators.parse_uuid(plan_id, "plan_id") if plan_id else None

        async def _work(session: AsyncSession) -> ProvisionedSubscription:
            if not await self._users.exists(session, uid):
                raise NotFoundError("User", uid)
            return await self._provision(session, uid, value, period, start, day, pid)

        result = await self._runner.run(_work)
        self._invalidate()
        logger.info(
            f"Provisioned {period.value} subscription {result.subscription.id} for user {uid} "
            f"with {len(result.charges)} installments of {value}"
        )
        return result

    async def create_from_plan(
        self, user_id: Any, plan_id: Any, start_date: Any, due_day: Any = 10
    ) -> ProvisionedSubscription:
        uid = validators.parse_uuid(user_id, "user_id")
        pid = validators.parse_uuid(plan_id, "plan_id")
        start = validators.parse_date(start_date, "start_date")
        day = validators.parse_due_day(due_day)

        async def _work(session: AsyncSession) -> ProvisionedSubscription:
            plan = await self._plans.get_plan_by_id(session, pid)
            if plan is None:
                raise NotFoundError("Plan", pid)
            if not plan.is_active:
                raise ValidationError(f"Plan {pid} is retired and cannot be subscribed to")
            if not await self._users.exists(session, uid):
                raise NotFoundError("User", uid)
            return await self._provision(session, uid, Decimal(plan.price), plan.periodicity, start, day, pid)

        result = await self._runner.run(_work)
        self._invalidate()
        logger.info(f"Provisioned subscription {result.subscription.id} from plan {pid} for user {uid}")
        return result

    async def _provision(
        self,
        session: AsyncSession,
        user_id: UUID,
        amount: Decimal,
        periodicity: Periodicity,
        start_date: date,
        due_day: int,
        plan_id: Optional[UUID],
    ) -> ProvisionedSubscription:
        subscription = await self._subscriptions.create(
            session, user_id, amount, periodicity, start_date, due_day, plan_id=plan_id
        )
        charges = [
            PendingChargeORM(
                user_id=user_id,
                subscription_id=subscription.id,
                amount=amount,
                due_date=item.due_date,
                description=item.description,
                status=ChargeStatus.PENDING,
                paid_payment_id=None,
            )
            for item in build_schedule(periodicity, start_date, due_day)
        ]
        await self._charges.create_many(session, charges)
        return ProvisionedSubscription(
            subscription=SubscriptionInDB.model_validate(subscription),
            charges=[PendingChargeInDB.model_validate(c) for c in charges],
        )

    async def cancel(self, subscription_id: Any) -> int:
        """Отменяет подписку и все её открытые начисления. Возвращает число отменённых начислений."""
        sid = validators.parse_uuid(subscription_id, "subscription_id")
        now = self._clock()

        async def _work(session: AsyncSession) -> int:
            subscription = await self._subscriptions.get_for_update(session, sid)
            if subscription is None:
                raise NotFoundError("Subscription", sid)
            await self._subscriptions.set_status(session, subscription, SubscriptionStatus.CANCELED, at=now)
            return await self._charges.cancel_open_for_subscription(session, sid)

        canceled = await self._runner.run(_work)
        self._invalidate()
        logger.info(f"Canceled subscription {sid} and {canceled} open charges")
        return canceled
