import logging
from datetime import date
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import PaymentORM
from billing_backoffice.models.enums import PaymentMethod

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Фактические платежи. После создания не меняются."""

    async def create(
        self,
        session: AsyncSession,
        user_id: UUID,
        amount: Decimal,
        payment_date: date,
        method: PaymentMethod,
        note: Optional[str] = None,
    ) -> PaymentORM:
        payment = PaymentORM(user_id=user_id, amount=amount, payment_date=payment_date, method=method, note=note)
        session.add(payment)
        await session.flush()
        return payment

    async def get(self, session: AsyncSession, payment_id: UUID) -> Optional[PaymentORM]:
        return await session.get(PaymentORM, payment_id)

    async def list_by_user(self, session: AsyncSession, user_id: UUID) -> List[PaymentORM]:
        stmt = (
            select(PaymentORM)
            .where(PaymentORM.user_id == user_id)
            .order_by(PaymentORM.payment_date.desc(), PaymentORM.created_at.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_between(self, session: AsyncSession, start: date, end: date) -> List[PaymentORM]:
        stmt = (
            select(PaymentORM)
            .where(PaymentORM.payment_date.between(start, end))
            .order_by(PaymentORM.payment_date)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def sum_between(self, session: AsyncSession, start: date, end: date) -> Decimal:
        stmt = select(func.sum(PaymentORM.amount)).where(PaymentORM.payment_date.between(start, end))
        total = (await session.execute(stmt)).scalar_one_or_none()
        return Decimal(str(total or 0))
