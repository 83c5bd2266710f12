# src/billing_backoffice/repositories/billing/pg_repositoryPendingCharge.py

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import PendingChargeORM
from billing_backoffice.models.enums import ChargeStatus, OPEN_CHARGE_STATUSES, charge_sources

logger = logging.getLogger(__name__)

_ORDER = (PendingChargeORM.due_date, PendingChargeORM.created_at, PendingChargeORM.id)


class PendingChargeRepository:
    """
    Начисления к оплате ("pagamentos pendentes").
    Все изменения статуса идут условными UPDATE: переход применяется, только если
    строка всё ещё в ожидаемом исходном статусе. Число затронутых строк - результат.
    """

    async def create(
        self,
        session: AsyncSession,
        user_id: UUID,
        amount: Decimal,
        due_date: date,
        description: str,
        subscription_id: Optional[UUID] = None,
    ) -> PendingChargeORM:
        charge = PendingChargeORM(
            user_id=user_id,
            subscription_id=subscription_id,
            amount=amount,
            due_date=due_date,
            description=description,
            status=ChargeStatus.PENDING,
            paid_payment_id=None,
        )
        session.add(charge)
        await session.flush()
        return charge

    async def create_many(self, session: AsyncSession, charges: Sequence[PendingChargeORM]) -> List[PendingChargeORM]:
        session.add_all(charges)
        await session.flush()
        return list(charges)

    async def get(self, session: AsyncSession, charge_id: UUID) -> Optional[PendingChargeORM]:
        return await session.get(PendingChargeORM, charge_id)

    async def get_for_update(self, session: AsyncSession, charge_id: UUID) -> Optional[PendingChargeORM]:
        """Свежая копия строки под блокировкой; перезаписывает объект в identity map."""
        stmt = (
            select(PendingChargeORM)
            .where(PendingChargeORM.id == charge_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(
        self, session: AsyncSession, user_id: UUID, statuses: Optional[Iterable[ChargeStatus]] = None
    ) -> List[PendingChargeORM]:
        stmt = select(PendingChargeORM).where(PendingChargeORM.user_id == user_id)
        if statuses is not None:
            stmt = stmt.where(PendingChargeORM.status.in_(list(statuses)))
        result = await session.execute(stmt.order_by(*_ORDER))
        return list(result.scalars().all())

    async def list_by_status(self, session: AsyncSession, status: ChargeStatus) -> List[PendingChargeORM]:
        result = await session.execute(
            select(PendingChargeORM).where(PendingChargeORM.status == status).order_by(*_ORDER)
        )
        return list(result.scalars().all())

    async def list_by_subscription(self, session: AsyncSession, subscription_id: UUID) -> List[PendingChargeORM]:
        result = await session.execute(
            select(PendingChargeORM).where(PendingChargeORM.subscription_id == subscription_id).order_by(*_ORDER)
        )
        return list(result.scalars().all())

    async def list_open_matching_amount(
        self, session: AsyncSession, user_id: UUID, amount: Decimal
    ) -> List[PendingChargeORM]:
        """Открытые (PENDING/OVERDUE) начисления пользователя с точно такой же суммой, раньше срок - раньше в списке."""
        stmt = (
            select(PendingChargeORM)
            .where(
                PendingChargeORM.user_id == user_id,
                PendingChargeORM.status.in_(OPEN_CHARGE_STATUSES),
                PendingChargeORM.amount == amount,
            )
            .order_by(*_ORDER)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_past_due(self, session: AsyncSession, today: date) -> List[PendingChargeORM]:
        """Открытые начисления со сроком строго раньше `today`."""
        stmt = (
            select(PendingChargeORM)
            .where(PendingChargeORM.due_date < today, PendingChargeORM.status.in_(OPEN_CHARGE_STATUSES))
            .order_by(*_ORDER)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_between(
        self, session: AsyncSession, start: date, end: date, status: ChargeStatus = ChargeStatus.PENDING
    ) -> List[PendingChargeORM]:
        """Начисления со сроком в [start, end] включительно."""
        stmt = (
            select(PendingChargeORM)
            .where(PendingChargeORM.due_date.between(start, end), PendingChargeORM.status == status)
            .order_by(*_ORDER)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_outstanding(self, session: AsyncSession, limit: int = 20) -> List[PendingChargeORM]:
        stmt = (
            select(PendingChargeORM)
            .where(PendingChargeORM.status.in_(OPEN_CHARGE_STATUSES))
            .order_by(*_ORDER)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    # ――― переходы статусов ――― #

    async def mark_paid(self, session: AsyncSession, charge_id: UUID, payment_id: UUID) -> bool:
        """PENDING|OVERDUE -> PAID. False, если строку уже кто-то перевёл."""
        stmt = (
            update(PendingChargeORM)
            .where(
                PendingChargeORM.id == charge_id,
                PendingChargeORM.status.in_(charge_sources(ChargeStatus.PAID)),
            )
            .values(status=ChargeStatus.PAID, paid_payment_id=payment_id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_overdue(self, session: AsyncSession, charge_ids: Sequence[UUID]) -> int:
        """PENDING -> OVERDUE одним UPDATE; строки в других статусах не трогаются."""
        if not charge_ids:
            return 0
        stmt = (
            update(PendingChargeORM)
            .where(
                PendingChargeORM.id.in_(list(charge_ids)),
                PendingChargeORM.status.in_(charge_sources(ChargeStatus.OVERDUE)),
            )
            .values(status=ChargeStatus.OVERDUE)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def cancel_open_for_subscription(self, session: AsyncSession, subscription_id: UUID) -> int:
        stmt = (
            update(PendingChargeORM)
            .where(
                PendingChargeORM.subscription_id == subscription_id,
                PendingChargeORM.status.in_(charge_sources(ChargeStatus.CANCELED)),
            )
            .values(status=ChargeStatus.CANCELED)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    # ――― агрегаты ――― #

    async def totals_by_status(self, session: AsyncSession) -> dict[ChargeStatus, tuple[int, Decimal]]:
        stmt = (
            select(PendingChargeORM.status, func.count(PendingChargeORM.id), func.sum(PendingChargeORM.amount))
            .group_by(PendingChargeORM.status)
        )
        rows = (await session.execute(stmt)).all()
        totals = {status: (0, Decimal("0")) for status in ChargeStatus}
        for status, n, amount in rows:
            totals[ChargeStatus(status)] = (n, Decimal(str(amount or 0)))
        return totals

    async def list_overdue_before(
        self, session: AsyncSession, today: date, user_id: Optional[UUID] = None
    ) -> List[PendingChargeORM]:
        stmt = select(PendingChargeORM).where(
            PendingChargeORM.status == ChargeStatus.OVERDUE, PendingChargeORM.due_date < today
        )
        if user_id is not None:
            stmt = stmt.where(PendingChargeORM.user_id == user_id)
        result = await session.execute(stmt.order_by(*_ORDER))
        return list(result.scalars().all())

    async def list_upcoming_for_user(self, session: AsyncSession, user_id: UUID, today: date) -> List[PendingChargeORM]:
        stmt = select(PendingChargeORM).where(
            PendingChargeORM.user_id == user_id,
            PendingChargeORM.status == ChargeStatus.PENDING,
            PendingChargeORM.due_date >= today,
        )
        result = await session.execute(stmt.order_by(*_ORDER))
        return list(result.scalars().all())
