# src/billing_backoffice/repositories/auth/pg_repositoryUser.py

import logging
from uuid import UUID
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backoffice.db import (
    UserORM, SubscriptionORM, PendingChargeORM, PaymentORM, LedgerEntryORM,
)
from billing_backoffice.exceptions import ConflictError
from billing_backoffice.models.enums import UserRole
from billing_backoffice.security import get_password_hash

logger = logging.getLogger(__name__)


class UserRepository:
    """Операции над пользователями. Сессию (и транзакцию) передаёт вызывающий."""

    async def create_user(
        self,
        session: AsyncSession,
        name: str,
        email: str,
        plain_password: str,
        role: UserRole = UserRole.SUBSCRIBER,
    ) -> UserORM:
        if await self.get_by_email(session, email) is not None:
            raise ConflictError(f"User with email {email} already exists.")
        user = UserORM(
            name=name,
            email=email,
            hashed_password=get_password_hash(plain_password),
            role=role,
        )
        session.add(user)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConflictError(f"User with email {email} already exists.") from e
        logger.info(f"Created user {user.id} ({role.value})")
        return user

    async def get_by_id(self, session: AsyncSession, user_id: UUID) -> Optional[UserORM]:
        """Находит пользователя по его UUID."""
        return await session.get(UserORM, user_id)

    async def get_by_email(self, session: AsyncSession, email: str) -> Optional[UserORM]:
        result = await session.execute(select(UserORM).where(UserORM.email == email))
        return result.scalar_one_or_none()

    async def exists(self, session: AsyncSession, user_id: UUID) -> bool:
        result = await session.execute(select(UserORM.id).where(UserORM.id == user_id))
        return result.scalar_one_or_none() is not None

    async def update_role(self, session: AsyncSession, user_id: UUID, role: UserRole) -> Optional[UserORM]:
        user = await session.get(UserORM, user_id)
        if user is None:
            return None
        user.role = role
        await session.flush()
        logger.info(f"Updated role for user {user_id} to '{role.value}'")
        return user

    async def delete_user(self, session: AsyncSession, user_id: UUID) -> bool:
        """
        Жёстко удаляет пользователя и всё, чем он владеет.
        Порядок важен: начисления ссылаются на платежи, подписки - на пользователя.
        """
        if not await self.exists(session, user_id):
            return False
        for model in (PendingChargeORM, LedgerEntryORM, PaymentORM, SubscriptionORM):
            await session.execute(delete(model).where(model.user_id == user_id))
        await session.execute(delete(UserORM).where(UserORM.id == user_id))
        logger.info(f"Deleted user {user_id} with all owned records")
        return True
