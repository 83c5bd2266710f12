import logging
from datetime import date
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import LedgerEntryORM
from billing_backoffice.models.enums import LedgerKind

logger = logging.getLogger(__name__)


class LedgerRepository:
    """Журнал ("histórico"). Только append; итоги и баланс всегда считаются запросом."""

    async def append(
        self,
        session: AsyncSession,
        user_id: UUID,
        kind: LedgerKind,
        amount: Decimal,
        entry_date: date,
        description: str,
    ) -> LedgerEntryORM:
        entry = LedgerEntryORM(user_id=user_id, kind=kind, amount=amount, entry_date=entry_date, description=description)
        session.add(entry)
        await session.flush()
        return entry

    async def list_by_user(
        self, session: AsyncSession, user_id: UUID, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[LedgerEntryORM]:
        stmt = select(LedgerEntryORM).where(LedgerEntryORM.user_id == user_id)
        if start is not None:
            stmt = stmt.where(LedgerEntryORM.entry_date >= start)
        if end is not None:
            stmt = stmt.where(LedgerEntryORM.entry_date <= end)
        result = await session.execute(stmt.order_by(LedgerEntryORM.entry_date.desc(), LedgerEntryORM.created_at.desc()))
        return list(result.scalars().all())

    async def totals(self, session: AsyncSession, user_id: Optional[UUID] = None) -> tuple[Decimal, Decimal]:
        """(сумма INFLOW, сумма OUTFLOW), по всем или по одному пользователю."""
        inflow = func.sum(case((LedgerEntryORM.kind == LedgerKind.INFLOW, LedgerEntryORM.amount), else_=0))
        outflow = func.sum(case((LedgerEntryORM.kind == LedgerKind.OUTFLOW, LedgerEntryORM.amount), else_=0))
        stmt = select(inflow, outflow)
        if user_id is not None:
            stmt = stmt.where(LedgerEntryORM.user_id == user_id)
        row = (await session.execute(stmt)).one()
        return Decimal(str(row[0] or 0)), Decimal(str(row[1] or 0))
