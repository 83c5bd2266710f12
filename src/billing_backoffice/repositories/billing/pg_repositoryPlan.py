import logging
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import SubscriptionPlanORM
from billing_backoffice.exceptions import ConflictError
from billing_backoffice.models.enums import Periodicity

logger = logging.getLogger(__name__)


class PlanRepository:
    """Тарифные планы. Планы не удаляются физически, а архивируются (is_active=False)."""

    async def create_plan(
        self, session: AsyncSession, name: str, description: str, price: Decimal, periodicity: Periodicity
    ) -> SubscriptionPlanORM:
        dup = await session.execute(select(SubscriptionPlanORM.id).where(SubscriptionPlanORM.name == name))
        if dup.scalar_one_or_none() is not None:
            raise ConflictError(f"Plan with name '{name}' already exists.")
        plan = SubscriptionPlanORM(name=name, description=description, price=price, periodicity=periodicity)
        session.add(plan)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Plan with name '{name}' already exists.") from e
        logger.info(f"Created plan '{name}' with id {plan.id}")
        return plan

    async def get_plan_by_id(self, session: AsyncSession, plan_id: UUID) -> Optional[SubscriptionPlanORM]:
        """Находит тарифный план по ID."""
        return await session.get(SubscriptionPlanORM, plan_id)

    async def list_active_plans(self, session: AsyncSession, limit: int = 50, offset: int = 0) -> List[SubscriptionPlanORM]:
        """Возвращает список всех активных (не архивных) тарифных планов."""
        stmt = (
            select(SubscriptionPlanORM)
            .where(SubscriptionPlanORM.is_active.is_(True))
            .order_by(SubscriptionPlanORM.price, SubscriptionPlanORM.name)
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def retire_plan(self, session: AsyncSession, plan_id: UUID) -> Optional[SubscriptionPlanORM]:
        plan = await session.get(SubscriptionPlanORM, plan_id)
        if plan is None:
            return None
        plan.is_active = False
        await session.flush()
        logger.info(f"Retired plan {plan_id}")
        return plan
