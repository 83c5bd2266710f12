import logging
from datetime import datetime

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import TokenBlacklistORM

logger = logging.getLogger(__name__)


class TokenBlacklistRepository:
    """Отозванные токены. Записи живут до истечения самого токена."""

    async def add(self, session: AsyncSession, token: str, expires_at: datetime) -> TokenBlacklistORM:
        existing = await session.execute(select(TokenBlacklistORM).where(TokenBlacklistORM.token == token))
        row = existing.scalar_one_or_none()
        if row is not None:
            return row
        row = TokenBlacklistORM(token=token, expires_at=expires_at)
        session.add(row)
        await session.flush()
        return row

    async def is_blacklisted(self, session: AsyncSession, token: str) -> bool:
        result = await session.execute(select(TokenBlacklistORM.id).where(TokenBlacklistORM.token == token))
        return result.scalar_one_or_none() is not None

    async def prune_expired(self, session: AsyncSession, now: datetime) -> int:
        result = await session.execute(delete(TokenBlacklistORM).where(TokenBlacklistORM.expires_at < now))
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Pruned {removed} expired blacklisted tokens")
        return removed
