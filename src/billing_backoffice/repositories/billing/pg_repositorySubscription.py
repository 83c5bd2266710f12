import logging
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import SubscriptionORM, PendingChargeORM
from billing_backoffice.models.enums import (
    Periodicity, SubscriptionStatus, OPEN_CHARGE_STATUSES, ensure_subscription_transition,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository:

    async def create(
        self,
        session: AsyncSession,
        user_id: UUID,
        amount: Decimal,
        periodicity: Periodicity,
        start_date: date,
        due_day: int,
        plan_id: Optional[UUID] = None,
    ) -> SubscriptionORM:
        subscription = SubscriptionORM(
            user_id=user_id,
            plan_id=plan_id,
            amount=amount,
            periodicity=periodicity,
            start_date=start_date,
            due_day=due_day,
            status=SubscriptionStatus.PENDING,
            canceled_at=None,
        )
        session.add(subscription)
        await session.flush()
        return subscription

    async def get(self, session: AsyncSession, subscription_id: UUID) -> Optional[SubscriptionORM]:
        return await session.get(SubscriptionORM, subscription_id)

    async def get_for_update(self, session: AsyncSession, subscription_id: UUID) -> Optional[SubscriptionORM]:
        """Перечитывает строку под блокировкой (SELECT ... FOR UPDATE)."""
        stmt = (
            select(SubscriptionORM)
            .where(SubscriptionORM.id == subscription_id)
            .with_for_update(of=SubscriptionORM)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(self, session: AsyncSession, user_id: UUID) -> List[SubscriptionORM]:
        stmt = (
            select(SubscriptionORM)
            .where(SubscriptionORM.user_id == user_id)
            .order_by(SubscriptionORM.start_date, SubscriptionORM.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def set_status(
        self,
        session: AsyncSession,
        subscription: SubscriptionORM,
        new_status: SubscriptionStatus,
        at: Optional[datetime] = None,
    ) -> SubscriptionORM:
        ensure_subscription_transition(subscription.status, new_status)
        old = subscription.status
        subscription.status = new_status
        if new_status is SubscriptionStatus.CANCELED:
            subscription.canceled_at = at
        await session.flush()
        logger.info(f"Subscription {subscription.id}: {old.value} -> {new_status.value}")
        return subscription

    # ――― агрегаты для дашборда ――― #

    async def count_by_status(self, session: AsyncSession) -> dict[SubscriptionStatus, int]:
        stmt = select(SubscriptionORM.status, func.count(SubscriptionORM.id)).group_by(SubscriptionORM.status)
        rows = (await session.execute(stmt)).all()
        counts = {status: 0 for status in SubscriptionStatus}
        for status, n in rows:
            counts[SubscriptionStatus(status)] = n
        return counts

    async def count_by_periodicity(self, session: AsyncSession) -> dict[Periodicity, int]:
        stmt = (
            select(SubscriptionORM.periodicity, func.count(SubscriptionORM.id))
            .group_by(SubscriptionORM.periodicity)
        )
        rows = (await session.execute(stmt)).all()
        return {Periodicity(p): n for p, n in rows}

    async def list_active_with_open_balance(self, session: AsyncSession, limit: int = 10) -> list[tuple]:
        """
        Активные подписки + число открытых начислений и их сумма.
        Возвращает кортежи (SubscriptionORM, open_count, open_amount).
        """
        agg = (
            select(
                PendingChargeORM.subscription_id.label("subscription_id"),
                func.count(PendingChargeORM.id).label("open_count"),
                func.sum(PendingChargeORM.amount).label("open_amount"),
            )
            .where(PendingChargeORM.status.in_(OPEN_CHARGE_STATUSES))
            .group_by(PendingChargeORM.subscription_id)
            .subquery()
        )
        stmt = (
            select(
                SubscriptionORM,
                func.coalesce(agg.c.open_count, 0),
                func.coalesce(agg.c.open_amount, 0),
            )
            .outerjoin(agg, agg.c.subscription_id == SubscriptionORM.id)
            .where(SubscriptionORM.status == SubscriptionStatus.ACTIVE)
            .order_by(SubscriptionORM.start_date, SubscriptionORM.id)
            .limit(limit)
        )
        rows = (await session.execute(stmt)).all()
        return [(sub, n, amount) for sub, n, amount in rows]
